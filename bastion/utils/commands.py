"""Subprocess execution for event log and firewall backends.

Every command is an argument list (never ``shell=True``). Failures are
classified so callers can tell a privilege problem, which no retry will fix,
from a spawn error or timeout, which may succeed on the next attempt.
"""

import asyncio
import errno
import subprocess

from ..errors import CommandError, PermissionDenied, TransientCommandError
from .logging import get_logger

logger = get_logger("utils.commands")

# Lower-cased fragments emitted by wevtutil, netsh and PowerShell when the
# caller lacks administrative rights.
_ACCESS_DENIED_MARKERS = (
    "access is denied",
    "access denied",
    "unauthorizedaccess",
    "permissiondenied",
    "requires elevation",
    "the requested operation requires elevation",
    "0x80070005",
)

# ERROR_FILENAME_EXCED_RANGE: the command line exceeds 32,767 characters
_WINERROR_COMMAND_TOO_LONG = 206


def _looks_like_access_denied(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _ACCESS_DENIED_MARKERS)


def _command_too_long(error: OSError) -> bool:
    return (
        getattr(error, "winerror", None) == _WINERROR_COMMAND_TOO_LONG
        or error.errno == errno.E2BIG
    )


class CommandRunner:
    """Runs external commands synchronously with a timeout."""

    def run(self, args: list[str], timeout: float = 30, input: str | None = None) -> str:
        """Run ``args`` and return stdout. ``input`` is written to stdin.

        Raises:
            TransientCommandError: executable missing, spawn failure or timeout.
            PermissionDenied: the command reported an access-denied condition.
            CommandError: any other non-zero exit, or a command line too long to spawn.
        """
        try:
            result = subprocess.run(args, input=input, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise TransientCommandError(f"{args[0]} timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise TransientCommandError(f"{args[0]} not found") from e
        except OSError as e:
            if _command_too_long(e):
                raise CommandError(f"{args[0]}: command line too long ({e})") from e
            raise TransientCommandError(f"{args[0]} failed to start: {e}") from e

        stdout = result.stdout or ""
        stderr = result.stderr or ""
        if result.returncode != 0:
            if _looks_like_access_denied(stderr) or _looks_like_access_denied(stdout):
                raise PermissionDenied(
                    f"{args[0]}: access denied", returncode=result.returncode, stderr=stderr.strip()
                )
            raise CommandError(
                f"{args[0]} exited with code {result.returncode}: {stderr.strip()[:500]}",
                returncode=result.returncode,
                stderr=stderr.strip(),
            )
        return stdout

    async def run_async(self, args: list[str], timeout: float = 30, input: str | None = None) -> str:
        """Run in the default executor so the event loop is never blocked."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: self.run(args, timeout, input))

    async def run_with_retry(
        self,
        args: list[str],
        timeout: float = 30,
        retries: int = 3,
        delay: float = 1.0,
        input: str | None = None,
    ) -> str:
        """Run with bounded exponential backoff on transient failures only."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.run_async(args, timeout, input)
            except TransientCommandError as e:
                if attempt >= retries:
                    raise
                wait = delay * (2 ** (attempt - 1))
                logger.warning(
                    "command_retry",
                    command=args[0],
                    attempt=attempt,
                    wait_seconds=wait,
                    error=str(e),
                )
                await asyncio.sleep(wait)
