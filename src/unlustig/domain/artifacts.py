from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Optional

from unlustig.domain.layout import LayoutResult
from unlustig.domain.media import Frame, MediaFormat


@dataclass(frozen=True)
class EncodeRequest:
    frames: tuple[Frame, ...]
    durations_ms: tuple[float, ...]
    loop_count: int | None
    target_format: MediaFormat
    destination: Path
    frame_rate: Fraction | None = None
    # Rows [start, stop) that hold the same pixels in every frame.
    shared_rows: tuple[int, int] | None = None


@dataclass(frozen=True)
class EncodeResult:
    path: Path
    format: MediaFormat
    frame_count: int
    durations_ms: tuple[float, ...]
    size_bytes: int


class OptimizationStatus(str, Enum):
    SKIPPED = "skipped"
    IMPROVED = "improved"
    FALLBACK_RETAINED = "fallback_retained"


@dataclass(frozen=True)
class OptimizationOutcome:
    status: OptimizationStatus
    original_size: int
    final_size: int
    reason: str = ""

    @property
    def success(self) -> bool:
        return self.status is OptimizationStatus.IMPROVED

    @property
    def fallback(self) -> bool:
        return self.status is OptimizationStatus.FALLBACK_RETAINED


@dataclass(frozen=True)
class SourceInfo:
    path: Path
    format: MediaFormat
    width: int
    height: int
    frame_count: int


@dataclass
class Artifacts:
    source: Optional[SourceInfo] = None
    layout: Optional[LayoutResult] = None
    output: Optional[EncodeResult] = None
    optimization: Optional[OptimizationOutcome] = None
