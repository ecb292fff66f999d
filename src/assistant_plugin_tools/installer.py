"""Hook installer for the assistant plugin.

Writes the plugin's hook scripts into the hooks directory and records the
installed version next to them.
"""

import json
import os
import shutil
import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Dict, List

from assistant_plugin_tools.constants import PACKAGE_NAME


HOOKS_DIR = os.path.expanduser(os.environ.get("PLUGIN_TOOLS_HOOKS_DIR", "~/.claude/hooks"))
VERSION_FILE_NAME = ".plugin-tools-version.json"
HOST_CLI = "claude"


LIVE_DATA_HOOK = """#!/bin/sh
# Resolves !command lines in the template read from stdin.
exec plugin-tools live-data "$@"
"""

HOOK_SCRIPTS: Dict[str, str] = {
    "plugin-tools-live-data.sh": LIVE_DATA_HOOK,
}


@dataclass
class InstallResult:
    """Result of an install run."""
    success: bool
    message: str
    installed_hooks: List[str] = field(default_factory=list)
    hooks_configured: bool = False
    hook_conflicts: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def get_package_version() -> str:
    try:
        return metadata.version(PACKAGE_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0"


def _write_hook(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def install(
    force: bool = False,
    verbose: bool = False,
    skip_host_check: bool = False,
    force_hooks: bool = False,
) -> InstallResult:
    """
    Install hook scripts into HOOKS_DIR.

    Args:
        force: Reinstall even if the recorded version matches
        verbose: Print each step
        skip_host_check: Do not require the host CLI on PATH
        force_hooks: Overwrite hook files that differ from ours

    Returns:
        InstallResult. Never raises for expected failures.
    """
    if not skip_host_check and shutil.which(HOST_CLI) is None:
        return InstallResult(
            success=False,
            message=f"'{HOST_CLI}' not found on PATH",
            errors=[f"Host CLI '{HOST_CLI}' is not installed"],
        )

    hooks_dir = Path(HOOKS_DIR)
    version = get_package_version()
    version_file = hooks_dir / VERSION_FILE_NAME

    if not force and version_file.exists():
        try:
            recorded = json.loads(version_file.read_text(encoding="utf-8")).get("version")
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            recorded = None
        if recorded == version:
            return InstallResult(
                success=True,
                message=f"Already installed ({version})",
                hooks_configured=True,
            )

    result = InstallResult(success=True, message="")

    try:
        hooks_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        result.success = False
        result.message = f"Cannot create hooks directory: {hooks_dir}"
        result.errors.append(str(e))
        return result

    for name, content in HOOK_SCRIPTS.items():
        hook_path = hooks_dir / name
        try:
            modified = hook_path.exists() and hook_path.read_text(encoding="utf-8") != content
        except (OSError, UnicodeDecodeError) as e:
            result.errors.append(f"{hook_path}: {e}")
            continue
        if modified and not force_hooks:
            result.hook_conflicts.append(str(hook_path))
            if verbose:
                print(f"  Skipped (modified): {hook_path}")
            continue
        try:
            _write_hook(hook_path, content)
        except OSError as e:
            result.errors.append(f"{hook_path}: {e}")
            continue
        result.installed_hooks.append(name)
        if verbose:
            print(f"  Installed hook: {hook_path}")

    if result.errors:
        result.success = False
        result.message = f"Install failed with {len(result.errors)} error(s)"
        return result

    try:
        version_file.write_text(json.dumps({
            "version": version,
            "installed_at": datetime.now(timezone.utc).isoformat(),
        }, indent=2))
    except OSError as e:
        result.success = False
        result.message = f"Cannot record installed version: {version_file}"
        result.errors.append(str(e))
        return result

    result.hooks_configured = not result.hook_conflicts
    result.message = f"Installed {len(result.installed_hooks)} hook(s) for version {version}"
    return result
