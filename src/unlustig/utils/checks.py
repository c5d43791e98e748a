from __future__ import annotations

import shutil
from typing import TYPE_CHECKING

from unlustig.exceptions import DependencyMissingError

if TYPE_CHECKING:
    from unlustig.utils.process import ProcessRunner


def find_binary(binary: str, runner: ProcessRunner | None = None) -> str | None:
    if runner is not None:
        return runner.which(binary)
    return shutil.which(binary)


def require_binary(binary: str, *, runner: ProcessRunner | None = None, purpose: str = "") -> str:
    path = find_binary(binary, runner)
    if path is None:
        suffix = f" (needed for {purpose})" if purpose else ""
        raise DependencyMissingError(
            f"Missing required dependency '{binary}'{suffix}. Install it and try again."
        )
    return path
