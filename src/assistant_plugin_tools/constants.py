"""Constants for the plugin tools."""

import os

# Live data injection
LIVE_DATA_TIMEOUT_MS = 10_000
LIVE_DATA_MAX_OUTPUT_BYTES = 50 * 1024  # 50KB
LIVE_DATA_TRUNCATION_MARKER = "\n... [output truncated at 50KB]"


# Rate limit backoff (milliseconds), clamped to sane minimums
RATE_LIMIT_RETRY_COUNT = max(1, int(os.getenv("PLUGIN_TOOLS_RATE_LIMIT_RETRY_COUNT", "3")))
RATE_LIMIT_INITIAL_DELAY = max(1000, int(os.getenv("PLUGIN_TOOLS_RATE_LIMIT_INITIAL_DELAY_MS", "5000")))
RATE_LIMIT_MAX_DELAY = max(5000, int(os.getenv("PLUGIN_TOOLS_RATE_LIMIT_MAX_DELAY_MS", "60000")))


# Code generation models
CODEX_DEFAULT_MODEL = os.getenv("PLUGIN_TOOLS_CODEX_MODEL", "gpt-5.3-codex")

DEFAULT_FALLBACK_CHAIN = [
    CODEX_DEFAULT_MODEL,
    "gpt-5.2-codex",
    "gpt-5.1-codex-mini",
]

DEFAULT_MODEL_TIMEOUT_S = float(os.getenv("PLUGIN_TOOLS_MODEL_TIMEOUT_S", "120"))

# Comma-separated string for CLI help
DEFAULT_FALLBACK_CHAIN_CSV = ",".join(DEFAULT_FALLBACK_CHAIN)


# Self-update
PACKAGE_NAME = "assistant-plugin-tools"
RELEASES_URL = os.getenv(
    "PLUGIN_TOOLS_RELEASES_URL",
    "https://api.github.com/repos/assistant-plugin-tools/assistant-plugin-tools/releases/latest",
)
UPDATE_CHECK_INTERVAL_HOURS = float(os.getenv("PLUGIN_TOOLS_UPDATE_CHECK_INTERVAL_H", "24"))
UPDATE_INSTALL_TIMEOUT_MS = 120_000

DEBUG_ENV_VAR = "PLUGIN_TOOLS_DEBUG"
