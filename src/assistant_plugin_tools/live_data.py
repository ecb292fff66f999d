"""Live data injection for skill and command templates.

Resolves `!command` lines by executing the command and replacing the line
with its output wrapped in <live-data> tags. Lines inside fenced code blocks
are left alone.
"""

import os
import re
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from assistant_plugin_tools.constants import (
    DEBUG_ENV_VAR,
    LIVE_DATA_MAX_OUTPUT_BYTES,
    LIVE_DATA_TIMEOUT_MS,
    LIVE_DATA_TRUNCATION_MARKER,
)


LIVE_DATA_LINE_RE = re.compile(r"^\s*!(.+)")
FENCE_RE = re.compile(r"^\s*(`{3,}|~{3,})")


class CommandExecutionError(Exception):
    """A shell command exited non-zero, timed out, or could not be spawned."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


@dataclass
class CommandResult:
    """Output of a single live-data command."""
    output: str
    error: bool = False


def is_live_data_line(line: str) -> bool:
    """Check if a line is a live-data command (optional whitespace, then `!`)."""
    return LIVE_DATA_LINE_RE.match(line) is not None


def get_code_block_ranges(lines: List[str]) -> List[Tuple[int, int]]:
    """
    Find fenced code blocks so `!` lines inside them can be skipped.

    Returns:
        List of (open_index, close_index) pairs, 0-indexed.
        A trailing fence with no partner is ignored.
    """
    ranges = []
    open_index = None

    for i, line in enumerate(lines):
        if FENCE_RE.match(line):
            if open_index is None:
                open_index = i
            else:
                ranges.append((open_index, i))
                open_index = None

    return ranges


def is_inside_code_block(line_index: int, ranges: List[Tuple[int, int]]) -> bool:
    """True if line_index falls strictly between a fence pair."""
    return any(start < line_index < end for start, end in ranges)


def extract_command(line: str) -> str:
    """Strip indentation and the leading `!` from a live-data line."""
    return re.sub(r"^\s*!", "", line, count=1).strip()


def _to_text(value: Union[str, bytes, None]) -> str:
    # No newline translation: \r and \r\n pass through
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def run_shell_command(command: str, timeout_ms: int = LIVE_DATA_TIMEOUT_MS) -> str:
    """
    Run a command line through the shell and return its stdout.

    Args:
        command: Shell command line
        timeout_ms: Wall-clock limit in milliseconds

    Returns:
        Captured stdout text

    Raises:
        CommandExecutionError: On non-zero exit, timeout, or spawn failure.
            `stderr` holds whatever the command wrote to standard error.
    """
    try:
        result = subprocess.run(
            command,
            shell=True,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout_ms / 1000,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandExecutionError(
            f"Command timed out after {timeout_ms}ms: {command}",
            stderr=_to_text(e.stderr),
        )
    except OSError as e:
        raise CommandExecutionError(f"Failed to spawn command: {e}")

    if result.returncode != 0:
        raise CommandExecutionError(
            f"Command failed with exit code {result.returncode}: {command}",
            stderr=_to_text(result.stderr),
        )

    return _to_text(result.stdout)


def truncate_output(output: str, max_bytes: int = LIVE_DATA_MAX_OUTPUT_BYTES) -> str:
    """Cut output to max_bytes of UTF-8 and append the truncation marker."""
    encoded = output.encode("utf-8")
    if len(encoded) <= max_bytes:
        return output

    # A multi-byte sequence split at the cut point decodes to U+FFFD
    head = encoded[:max_bytes].decode("utf-8", errors="replace")
    return head + LIVE_DATA_TRUNCATION_MARKER


def execute_command(command: str) -> CommandResult:
    """
    Execute a live-data command. Never raises.

    On failure the output is the command's stderr, or the error message
    when the command wrote nothing to stderr.
    """
    if os.environ.get(DEBUG_ENV_VAR):
        print(f"[DEBUG] live-data exec: {command}", file=sys.stderr)

    try:
        stdout = run_shell_command(command, timeout_ms=LIVE_DATA_TIMEOUT_MS)
    except CommandExecutionError as e:
        return CommandResult(output=e.stderr or str(e), error=True)

    return CommandResult(output=truncate_output(stdout or ""))


def format_live_data_tag(command: str, output: str, error: bool = False) -> str:
    """Wrap command output in a <live-data> tag, marking failures with error="true"."""
    if error:
        return f'<live-data command="{command}" error="true">{output}</live-data>'
    return f'<live-data command="{command}">{output}</live-data>'


def resolve_live_data(content: str) -> str:
    """
    Resolve all `!command` lines in content by executing them and injecting output.

    Commands run one at a time, top to bottom. Output is inserted as-is and
    never scanned for further commands.
    """
    lines = content.split("\n")
    code_block_ranges = get_code_block_ranges(lines)

    result = []
    for index, line in enumerate(lines):
        if not is_live_data_line(line) or is_inside_code_block(index, code_block_ranges):
            result.append(line)
            continue

        command = extract_command(line)
        executed = execute_command(command)
        result.append(format_live_data_tag(command, executed.output, executed.error))

    return "\n".join(result)


def resolve_live_data_file(path: Path, encoding: str = "utf-8") -> str:
    """Read a template file and resolve its live-data lines."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Template not found: {path}")

    return resolve_live_data(path.read_bytes().decode(encoding))
