"""Self-update through the package registry.

Checks the release feed for a newer version, upgrades the installed package
with pip, then reconciles the runtime (hooks directory and installer refresh).
"""

import json
import os
import re
import shlex
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import httpx

from assistant_plugin_tools import installer
from assistant_plugin_tools.constants import (
    DEBUG_ENV_VAR,
    PACKAGE_NAME,
    RELEASES_URL,
    UPDATE_CHECK_INTERVAL_HOURS,
    UPDATE_INSTALL_TIMEOUT_MS,
)
from assistant_plugin_tools.live_data import CommandExecutionError, run_shell_command


DEFAULT_STATE_PATH = Path("~/.config/plugin-tools/update-check.json")


class UpdateError(Exception):
    """Error while checking for or applying an update."""
    pass


@dataclass
class ReleaseInfo:
    """A published release from the release feed."""
    tag_name: str
    name: str = ""
    published_at: str = ""
    html_url: str = ""
    body: str = ""
    prerelease: bool = False
    draft: bool = False

    @property
    def version(self) -> str:
        return self.tag_name.lstrip("v")


@dataclass
class UpdateCheckResult:
    current_version: str
    latest_version: str
    update_available: bool
    release: Optional[ReleaseInfo] = None


@dataclass
class ReconcileResult:
    success: bool
    message: str
    errors: List[str] = field(default_factory=list)


@dataclass
class UpdateResult:
    success: bool
    message: str
    previous_version: Optional[str] = None
    new_version: Optional[str] = None
    errors: List[str] = field(default_factory=list)


# =============================================================================
# VERSION CHECK
# =============================================================================

def _version_key(version: str) -> Tuple[int, ...]:
    parts = []
    for piece in version.strip().lstrip("v").split("."):
        match = re.match(r"\d+", piece)
        parts.append(int(match.group()) if match else 0)
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """Compare dotted versions. Returns -1, 0 or 1."""
    key_a, key_b = _version_key(a), _version_key(b)
    width = max(len(key_a), len(key_b))
    key_a += (0,) * (width - len(key_a))
    key_b += (0,) * (width - len(key_b))
    return (key_a > key_b) - (key_a < key_b)


def get_installed_version() -> str:
    return installer.get_package_version()


def fetch_latest_release(url: Optional[str] = None, timeout: float = 10.0) -> ReleaseInfo:
    """
    Fetch the latest release from a GitHub-style releases endpoint.

    Raises:
        UpdateError: On HTTP or network errors, or a malformed response.
    """
    url = url or RELEASES_URL
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.get(url, headers={"Accept": "application/vnd.github+json"})
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        raise UpdateError(f"Release check failed ({e.response.status_code}): {url}")
    except httpx.RequestError as e:
        raise UpdateError(f"Network error during release check: {e}")
    except ValueError as e:
        raise UpdateError(f"Invalid release response: {e}")

    if not isinstance(data, dict) or not data.get("tag_name"):
        raise UpdateError("Release response missing tag_name")

    return ReleaseInfo(
        tag_name=data["tag_name"],
        name=data.get("name") or "",
        published_at=data.get("published_at") or "",
        html_url=data.get("html_url") or "",
        body=data.get("body") or "",
        prerelease=bool(data.get("prerelease", False)),
        draft=bool(data.get("draft", False)),
    )


def check_for_updates(url: Optional[str] = None) -> UpdateCheckResult:
    """Compare the installed version against the latest published release."""
    current = get_installed_version()
    release = fetch_latest_release(url)
    available = (
        not release.draft
        and not release.prerelease
        and compare_versions(release.version, current) > 0
    )
    return UpdateCheckResult(
        current_version=current,
        latest_version=release.version,
        update_available=available,
        release=release,
    )


def _state_path(state_path: Optional[Path]) -> Path:
    if state_path is not None:
        return Path(state_path)
    return Path(os.environ.get("PLUGIN_TOOLS_UPDATE_STATE", str(DEFAULT_STATE_PATH))).expanduser()


def should_check_for_updates(
    state_path: Optional[Path] = None,
    interval_hours: float = UPDATE_CHECK_INTERVAL_HOURS,
    now: Optional[datetime] = None,
) -> bool:
    """True when no check was recorded within interval_hours."""
    path = _state_path(state_path)
    now = now or datetime.now(timezone.utc)

    if not path.exists():
        return True

    try:
        last_check = datetime.fromisoformat(json.loads(path.read_text())["last_check"])
    except (json.JSONDecodeError, IOError, KeyError, TypeError, ValueError):
        return True

    if last_check.tzinfo is None:
        last_check = last_check.replace(tzinfo=timezone.utc)
    return now - last_check >= timedelta(hours=interval_hours)


def record_update_check(
    state_path: Optional[Path] = None,
    latest_version: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Path:
    path = _state_path(state_path)
    now = now or datetime.now(timezone.utc)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({
        "last_check": now.isoformat(),
        "latest_version": latest_version,
    }, indent=2))
    return path


# =============================================================================
# UPDATE
# =============================================================================

def reconcile_update_runtime(verbose: bool = False) -> ReconcileResult:
    """
    Bring the runtime in line with the freshly installed package.

    Ensures the hooks directory exists and re-runs the installer with
    forced hooks. Safe to run repeatedly.
    """
    hooks_dir = Path(installer.HOOKS_DIR)
    try:
        if not hooks_dir.exists():
            hooks_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return ReconcileResult(
            success=False,
            message=f"Cannot create hooks directory: {hooks_dir}",
            errors=[str(e)],
        )

    result = installer.install(
        force=True,
        verbose=verbose,
        skip_host_check=True,
        force_hooks=True,
    )

    if not result.success:
        return ReconcileResult(
            success=False,
            message=f"Runtime reconciliation failed: {result.message}",
            errors=list(result.errors),
        )

    return ReconcileResult(success=True, message="Runtime reconciled")


def build_install_command() -> str:
    return f"{shlex.quote(sys.executable)} -m pip install --upgrade {PACKAGE_NAME}"


def perform_update(verbose: bool = False, url: Optional[str] = None) -> UpdateResult:
    """
    Upgrade to the latest release and reconcile the runtime.

    Never raises; failures are reported in the result.
    """
    previous = get_installed_version()

    try:
        release = fetch_latest_release(url)
    except UpdateError as e:
        return UpdateResult(success=False, message=str(e), previous_version=previous, errors=[str(e)])

    command = build_install_command()
    if verbose or os.environ.get(DEBUG_ENV_VAR):
        print(f"Running: {command}", file=sys.stderr)

    try:
        run_shell_command(command, timeout_ms=UPDATE_INSTALL_TIMEOUT_MS)
    except CommandExecutionError as e:
        detail = e.stderr.strip() or str(e)
        return UpdateResult(
            success=False,
            message=f"Package install failed: {detail}",
            previous_version=previous,
            errors=[detail],
        )

    reconcile = reconcile_update_runtime(verbose=verbose)
    if not reconcile.success:
        return UpdateResult(
            success=False,
            message=reconcile.message,
            previous_version=previous,
            new_version=release.version,
            errors=reconcile.errors,
        )

    return UpdateResult(
        success=True,
        message=f"Updated {previous} -> {release.version}",
        previous_version=previous,
        new_version=release.version,
    )
