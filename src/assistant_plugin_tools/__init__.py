"""Auxiliary tooling for the assistant plugin."""
