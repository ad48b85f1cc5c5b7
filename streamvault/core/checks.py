"""Shared component check utilities.

Reusable async functions for checking the external media binaries
(ffmpeg and ffprobe). Used by the health check endpoints.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass
class CheckResult:
    """Result of a component availability check.

    Attributes:
        name: Component name (e.g., "ffmpeg", "ffprobe", "object_store")
        available: Whether the component is available and functional
        version: Version string if available
        error: Error message if check failed
        details: Additional details about the check result
    """

    name: str
    available: bool
    version: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


async def _run_binary_check(
    name: str,
    command: List[str],
    timeout: float,
    parse_output: Callable[[bytes], Tuple[bool, Optional[str], Optional[str]]],
) -> CheckResult:
    """Run a binary availability check with common error handling.

    Args:
        name: Component name for the result.
        command: Command and arguments to execute.
        timeout: Maximum time to wait in seconds.
        parse_output: Callback to parse stdout and determine success.
            Should return (success, version, error_message).

    Returns:
        CheckResult with availability status.
    """
    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)

        if proc.returncode == 0:
            success, version, error = parse_output(stdout)
            if success:
                return CheckResult(name=name, available=True, version=version)
            return CheckResult(name=name, available=False, version=version, error=error)

        return CheckResult(
            name=name,
            available=False,
            error=f"{command[0]} returned non-zero exit code",
        )
    except asyncio.TimeoutError:
        if proc:
            proc.kill()
            await proc.wait()
        return CheckResult(
            name=name,
            available=False,
            error=f"{command[0]} check timed out",
        )
    except FileNotFoundError:
        return CheckResult(
            name=name,
            available=False,
            error=f"{command[0]} not found",
        )
    except OSError as e:
        return CheckResult(
            name=name,
            available=False,
            error=str(e),
        )


def _version_parser(pattern: str) -> Callable[[bytes], Tuple[bool, Optional[str], Optional[str]]]:
    def parse_version(stdout: bytes) -> Tuple[bool, Optional[str], Optional[str]]:
        match = re.search(pattern, stdout.decode(errors="replace"))
        version = match.group(1) if match else "unknown"
        return True, version, None

    return parse_version


async def check_ffmpeg(binary: str = "ffmpeg", timeout: float = 5.0) -> CheckResult:
    """Check ffmpeg availability and version.

    Args:
        binary: ffmpeg executable name or path.
        timeout: Maximum time to wait for the check in seconds.

    Returns:
        CheckResult with availability status and version if available.
    """
    return await _run_binary_check(
        name="ffmpeg",
        command=[binary, "-version"],
        timeout=timeout,
        parse_output=_version_parser(r"ffmpeg version (\S+)"),
    )


async def check_ffprobe(binary: str = "ffprobe", timeout: float = 5.0) -> CheckResult:
    """Check ffprobe availability and version.

    Args:
        binary: ffprobe executable name or path.
        timeout: Maximum time to wait for the check in seconds.

    Returns:
        CheckResult with availability status and version if available.
    """
    return await _run_binary_check(
        name="ffprobe",
        command=[binary, "-version"],
        timeout=timeout,
        parse_output=_version_parser(r"ffprobe version (\S+)"),
    )
