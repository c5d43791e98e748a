"""
Optimizer bridge for unlustig.

Runs gifsicle on an encoded GIF and keeps its result only when it is a
valid GIF with the same frame count that is strictly smaller than the
original. In every other case (tool missing, non-zero exit, timeout,
larger or unreadable output) the encoder's file is left untouched.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from unlustig.domain.artifacts import OptimizationOutcome, OptimizationStatus
from unlustig.domain.media import MediaFormat
from unlustig.exceptions import ConfigurationError, DependencyMissingError, ProcessTimeoutError
from unlustig.services.decode import SNIFF_BYTES, sniff_format
from unlustig.utils.logging import get_logger
from unlustig.utils.process import ProcessRunner, default_runner

log = get_logger(__name__)

OPTIMIZABLE_FORMATS = frozenset({MediaFormat.GIF})
DEFAULT_TIMEOUT_S = 120.0


def parse_level(level: str | int | None) -> int | None:
    """`O1`..`O3` or `1`..`3`; None means no -O flag."""
    if level is None:
        return None
    text = str(level).strip().upper().lstrip("-").lstrip("O")
    if text not in {"1", "2", "3"}:
        raise ConfigurationError(f"Invalid optimization level '{level}'. Use O1, O2 or O3.")
    return int(text)


def validate_lossy(lossy: int | None) -> int | None:
    if lossy is None:
        return None
    if not 0 < lossy <= 200:
        raise ConfigurationError(f"Invalid lossy value {lossy}. Use a value between 1 and 200.")
    return lossy


def build_gifsicle_cmd(
    path: str | Path,
    out: str | Path,
    *,
    level: int | None,
    lossy: int | None = None,
    reduce_colors: bool = False,
    gifsicle: str = "gifsicle",
) -> list[str]:
    cmd = [gifsicle, "--no-conserve-memory", "-w"]
    if level is not None:
        cmd.append(f"-O{level}")
    if lossy:
        cmd.append(f"--lossy={lossy}")
    if reduce_colors:
        cmd += ["--colors", "256"]
    cmd += ["-o", str(out), str(path)]
    return cmd


def gif_frame_count(path: Path) -> int | None:
    try:
        with Image.open(path) as image:
            if image.format != "GIF":
                return None
            return image.n_frames
    except (OSError, EOFError, ValueError, SyntaxError, Image.DecompressionBombError):
        return None


def _detect(path: Path) -> MediaFormat | None:
    with path.open("rb") as fh:
        return sniff_format(fh.read(SNIFF_BYTES))


@dataclass
class GifsicleOptimizer:
    runner: ProcessRunner = field(default_factory=default_runner)
    gifsicle: str = "gifsicle"
    timeout: float = DEFAULT_TIMEOUT_S

    def optimize(
        self,
        path: str | Path,
        level: str | int | None,
        *,
        lossy: int | None = None,
        reduce_colors: bool = False,
    ) -> OptimizationOutcome:
        target = Path(path)
        parsed_level = parse_level(level)
        lossy = validate_lossy(lossy)
        if not target.is_file():
            log.warning("Nothing to optimize: %s does not exist.", target)
            return OptimizationOutcome(
                status=OptimizationStatus.SKIPPED,
                original_size=0,
                final_size=0,
                reason=f"{target.name} not found",
            )
        original_size = target.stat().st_size

        def _outcome(
            status: OptimizationStatus,
            reason: str,
            size: int = original_size,
        ) -> OptimizationOutcome:
            return OptimizationOutcome(
                status=status,
                original_size=original_size,
                final_size=size,
                reason=reason,
            )

        if parsed_level is None and not lossy and not reduce_colors:
            return _outcome(OptimizationStatus.SKIPPED, "no optimization requested")
        media_format = _detect(target)
        if media_format not in OPTIMIZABLE_FORMATS:
            fmt = media_format.value if media_format else "unknown"
            return _outcome(OptimizationStatus.SKIPPED, f"{fmt} output is not optimizable")

        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.stem}.opt.", suffix=".gif"
        )
        os.close(fd)
        tmp = Path(tmp_name)
        cmd = build_gifsicle_cmd(
            target,
            tmp,
            level=parsed_level,
            lossy=lossy,
            reduce_colors=reduce_colors,
            gifsicle=self.gifsicle,
        )
        log.info("Optimizing %s with gifsicle; this may take a while.", target.name)
        try:
            try:
                result = self.runner.run(cmd, timeout=self.timeout)
            except (DependencyMissingError, ProcessTimeoutError) as exc:
                log.warning("Optimization failed (%s); keeping the unoptimized file.", exc.message)
                return _outcome(OptimizationStatus.FALLBACK_RETAINED, exc.message)

            if not result.ok:
                reason = f"gifsicle exited with status {result.returncode}: {result.stderr_text()}"
                log.warning("%s; keeping the unoptimized file.", reason)
                return _outcome(OptimizationStatus.FALLBACK_RETAINED, reason)

            new_size = tmp.stat().st_size if tmp.exists() else 0
            if new_size == 0:
                return _outcome(OptimizationStatus.FALLBACK_RETAINED, "gifsicle produced no output")
            if new_size >= original_size:
                log.info(
                    "Optimized file is not smaller (%d >= %d bytes); keeping the original.",
                    new_size,
                    original_size,
                )
                return _outcome(
                    OptimizationStatus.FALLBACK_RETAINED,
                    f"optimized output is not smaller ({new_size} >= {original_size} bytes)",
                )
            if gif_frame_count(tmp) != gif_frame_count(target):
                return _outcome(
                    OptimizationStatus.FALLBACK_RETAINED,
                    "optimized output is not a valid GIF with the same frame count",
                )

            os.replace(tmp, target)
            log.info("Optimized %s: %d -> %d bytes", target.name, original_size, new_size)
            return _outcome(OptimizationStatus.IMPROVED, "", size=new_size)
        finally:
            tmp.unlink(missing_ok=True)


def optimize(
    path: str | Path,
    level: str | int | None,
    *,
    lossy: int | None = None,
    reduce_colors: bool = False,
    runner: ProcessRunner | None = None,
    timeout: float | None = None,
    gifsicle: str = "gifsicle",
) -> OptimizationOutcome:
    optimizer = GifsicleOptimizer(
        runner=runner or default_runner(),
        gifsicle=gifsicle,
        timeout=timeout if timeout is not None else DEFAULT_TIMEOUT_S,
    )
    return optimizer.optimize(path, level, lossy=lossy, reduce_colors=reduce_colors)
