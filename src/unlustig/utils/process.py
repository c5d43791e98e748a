"""
Subprocess boundary for unlustig.

Every external tool (ffmpeg, ffprobe, gifsicle) is invoked through a
`ProcessRunner`. The default implementation wraps `subprocess.run` with a
wall-clock timeout and captured stdio; tests inject a fake runner instead.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol, Sequence

from unlustig.exceptions import DependencyMissingError, ProcessTimeoutError
from unlustig.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    args: tuple[str, ...]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_text(self, limit: int = 2000) -> str:
        text = self.stderr.decode("utf-8", errors="replace").strip()
        if len(text) > limit:
            return "..." + text[-limit:]
        return text


class ProcessRunner(Protocol):
    def run(
        self,
        cmd: Sequence[str],
        *,
        input: bytes | None = None,
        timeout: float | None = None,
    ) -> ProcessResult: ...

    def which(self, binary: str) -> str | None: ...


class SubprocessRunner:
    """Runs commands with `subprocess.run`; never uses a shell."""

    def run(
        self,
        cmd: Sequence[str],
        *,
        input: bytes | None = None,
        timeout: float | None = None,
    ) -> ProcessResult:
        args = tuple(str(part) for part in cmd)
        log.debug("exec: %s", " ".join(args))
        try:
            proc = subprocess.run(
                args,
                input=input,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DependencyMissingError(
                f"Missing required dependency '{args[0]}'. Install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProcessTimeoutError(
                f"'{args[0]}' did not finish within {timeout:g}s.",
                timeout=timeout,
            ) from exc
        return ProcessResult(
            args=args,
            returncode=proc.returncode,
            stdout=proc.stdout or b"",
            stderr=proc.stderr or b"",
        )

    def which(self, binary: str) -> str | None:
        return shutil.which(binary)


def default_runner() -> ProcessRunner:
    return SubprocessRunner()
