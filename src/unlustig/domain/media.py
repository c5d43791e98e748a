from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from pathlib import Path

from PIL import Image

BYTES_PER_PIXEL = 4


class FormatFamily(str, Enum):
    ANIMATED_IMAGE = "animated_image"
    VIDEO_CONTAINER = "video_container"


class MediaFormat(str, Enum):
    GIF = "gif"
    WEBP = "webp"
    MP4 = "mp4"
    MOV = "mov"
    AVI = "avi"
    MKV = "mkv"
    WEBM = "webm"

    @property
    def family(self) -> FormatFamily:
        if self in (MediaFormat.GIF, MediaFormat.WEBP):
            return FormatFamily.ANIMATED_IMAGE
        return FormatFamily.VIDEO_CONTAINER

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @classmethod
    def from_extension(cls, path: str | Path) -> MediaFormat | None:
        suffix = Path(path).suffix.lower().lstrip(".")
        try:
            return cls(suffix)
        except ValueError:
            return None

    @classmethod
    def parse(cls, value: str) -> MediaFormat:
        return cls(value.strip().lower().lstrip("."))


@dataclass(frozen=True)
class Frame:
    """One RGBA raster. The pixel buffer is immutable bytes."""

    width: int
    height: int
    pixels: bytes

    def __post_init__(self) -> None:
        expected = self.width * self.height * BYTES_PER_PIXEL
        if self.width <= 0 or self.height <= 0 or len(self.pixels) != expected:
            raise ValueError(
                f"RGBA buffer of {len(self.pixels)} bytes does not match "
                f"{self.width}x{self.height}"
            )

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @classmethod
    def from_image(cls, image: Image.Image) -> Frame:
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls(width=rgba.width, height=rgba.height, pixels=rgba.tobytes())

    def to_image(self) -> Image.Image:
        # frombytes copies the buffer, so callers may draw on the result.
        return Image.frombytes("RGBA", self.size, self.pixels)


@dataclass(frozen=True)
class MediaDocument:
    frames: tuple[Frame, ...]
    width: int
    height: int
    durations_ms: tuple[float, ...]
    source_format: MediaFormat
    loop_count: int | None = 0
    frame_rate: Fraction | None = None

    def __post_init__(self) -> None:
        if not self.frames:
            raise ValueError("MediaDocument needs at least one frame")
        if len(self.durations_ms) != len(self.frames):
            raise ValueError("one duration per frame is required")
        for index, frame in enumerate(self.frames):
            if frame.size != (self.width, self.height):
                raise ValueError(
                    f"frame {index} is {frame.width}x{frame.height}, "
                    f"expected {self.width}x{self.height}"
                )

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def total_duration_ms(self) -> float:
        return float(sum(self.durations_ms))
