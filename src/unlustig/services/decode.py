"""
Decoding service for unlustig.

Turns an input file into a `MediaDocument`: an ordered tuple of RGBA frames
with per-frame durations and loop metadata.

Responsibilities:
- Detect the container from its magic bytes (the extension is a hint only)
- Pick the decoder for the format family
- Report malformed, truncated or empty inputs as typed errors

Does NOT:
- Write any file
- Know anything about captions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from PIL import Image, ImageSequence

from unlustig.config.settings import Settings
from unlustig.domain.media import BYTES_PER_PIXEL, FormatFamily, Frame, MediaDocument, MediaFormat
from unlustig.exceptions import (
    DecodeError,
    DecodeErrorKind,
    DependencyMissingError,
    ProcessTimeoutError,
)
from unlustig.utils import ffmpeg
from unlustig.utils.checks import require_binary
from unlustig.utils.logging import get_logger
from unlustig.utils.process import ProcessRunner, default_runner

log = get_logger(__name__)

SNIFF_BYTES = 512
# Pillow reports no duration for some single-frame GIFs; browsers show them for 100 ms.
DEFAULT_FRAME_DURATION_MS = 100.0
EBML_MAGIC = b"\x1a\x45\xdf\xa3"


def sniff_format(header: bytes) -> MediaFormat | None:
    if header[:6] in (b"GIF87a", b"GIF89a"):
        return MediaFormat.GIF
    if header[:4] == b"RIFF":
        kind = header[8:12]
        if kind == b"WEBP":
            return MediaFormat.WEBP
        if kind == b"AVI ":
            return MediaFormat.AVI
        return None
    if header[:4] == EBML_MAGIC:
        return MediaFormat.WEBM if b"webm" in header else MediaFormat.MKV
    if header[4:8] == b"ftyp":
        return MediaFormat.MOV if header[8:12] == b"qt  " else MediaFormat.MP4
    return None


def detect_format(path: str | Path) -> MediaFormat:
    p = Path(path)
    if not p.is_file():
        raise DecodeError(DecodeErrorKind.NOT_FOUND, f"input not found: {p}")
    with p.open("rb") as fh:
        header = fh.read(SNIFF_BYTES)

    by_extension = MediaFormat.from_extension(p)
    by_content = sniff_format(header)
    if by_content is None:
        if by_extension is not None and len(header) < 12:
            raise DecodeError(
                DecodeErrorKind.CORRUPT,
                f"{p.name} is too short to be a {by_extension.value} file",
            )
        raise DecodeError(
            DecodeErrorKind.UNSUPPORTED_FORMAT,
            f"{p.name} is not a supported format (gif, webp, mp4, mov, avi, mkv, webm)",
        )
    if by_extension is not None and by_extension is not by_content:
        log.warning(
            "%s has a .%s extension but contains %s data; decoding as %s.",
            p.name,
            by_extension.value,
            by_content.value,
            by_content.value,
        )
    return by_content


class FrameDecoder(Protocol):
    def decode(self, path: Path, media_format: MediaFormat) -> MediaDocument: ...


@dataclass
class AnimatedImageDecoder:
    """Pillow-based decoder for GIF and animated WebP."""

    def decode(self, path: Path, media_format: MediaFormat) -> MediaDocument:
        try:
            with Image.open(path) as image:
                canvas = image.size
                loop_count = image.info.get("loop")
                frames: list[Frame] = []
                durations: list[float] = []
                # Pillow composites each frame onto the previous one while
                # seeking, applying disposal and transparency.
                for index, raw in enumerate(ImageSequence.Iterator(image)):
                    if raw.size != canvas:
                        raise DecodeError(
                            DecodeErrorKind.CORRUPT,
                            f"frame {index} is {raw.size[0]}x{raw.size[1]}, "
                            f"canvas is {canvas[0]}x{canvas[1]}",
                        )
                    duration = raw.info.get("duration")
                    durations.append(
                        float(duration) if duration is not None else DEFAULT_FRAME_DURATION_MS
                    )
                    frames.append(Frame.from_image(raw))
        except DecodeError:
            raise
        except (
            OSError, EOFError, ValueError, SyntaxError, Image.DecompressionBombError
        ) as exc:
            raise DecodeError(
                DecodeErrorKind.CORRUPT, f"could not decode {path.name}: {exc}"
            ) from exc

        if not frames:
            raise DecodeError(DecodeErrorKind.CORRUPT, f"{path.name} contains no frames")

        return MediaDocument(
            frames=tuple(frames),
            width=canvas[0],
            height=canvas[1],
            durations_ms=tuple(durations),
            source_format=media_format,
            loop_count=int(loop_count) if loop_count is not None else None,
        )


@dataclass
class VideoContainerDecoder:
    """ffmpeg-based decoder: probe geometry and rate, then read raw RGBA frames."""

    runner: ProcessRunner = field(default_factory=default_runner)
    settings: Settings = field(default_factory=Settings)

    def decode(self, path: Path, media_format: MediaFormat) -> MediaDocument:
        try:
            ffprobe = require_binary(
                self.settings.ffprobe_binary, runner=self.runner, purpose="video decoding"
            )
            ffmpeg_bin = require_binary(
                self.settings.ffmpeg_binary, runner=self.runner, purpose="video decoding"
            )
            probe = self.runner.run(
                ffmpeg.build_probe_cmd(path, ffprobe=ffprobe),
                timeout=self.settings.transcoder_timeout,
            )
            if not probe.ok:
                raise DecodeError(
                    DecodeErrorKind.CORRUPT,
                    f"ffprobe could not read {path.name}: {probe.stderr_text()}",
                )
            info = ffmpeg.parse_probe(probe.stdout)
            if info is None:
                raise DecodeError(DecodeErrorKind.CORRUPT, f"{path.name} has no video stream")
            rate = info["fps"]
            if rate is None:
                raise DecodeError(
                    DecodeErrorKind.CORRUPT, f"{path.name} does not declare a frame rate"
                )

            width, height = info["width"], info["height"]
            log.debug(
                "Probed %s: %s %sx%s %s @ %s fps, %s s",
                path.name,
                info["video_codec"],
                width,
                height,
                info["pixel_format"],
                rate,
                info["duration_seconds"],
            )
            result = self.runner.run(
                ffmpeg.build_decode_cmd(path, rate=rate, ffmpeg=ffmpeg_bin),
                timeout=self.settings.transcoder_timeout,
            )
        except DependencyMissingError as exc:
            raise DecodeError(DecodeErrorKind.MISSING_DEPENDENCY, exc.message) from exc
        except ProcessTimeoutError as exc:
            raise DecodeError(
                DecodeErrorKind.CORRUPT, f"decoding {path.name} timed out: {exc.message}"
            ) from exc

        if not result.ok:
            raise DecodeError(
                DecodeErrorKind.CORRUPT,
                f"ffmpeg could not decode {path.name}: {result.stderr_text()}",
            )

        frames = split_frames(result.stdout, width, height)
        if not frames:
            raise DecodeError(DecodeErrorKind.CORRUPT, f"{path.name} contains no frames")

        duration = 1000.0 / float(rate)
        return MediaDocument(
            frames=frames,
            width=width,
            height=height,
            durations_ms=tuple(duration for _ in frames),
            source_format=media_format,
            loop_count=None,
            frame_rate=rate,
        )


def split_frames(raw: bytes, width: int, height: int) -> tuple[Frame, ...]:
    frame_bytes = width * height * BYTES_PER_PIXEL
    if len(raw) % frame_bytes:
        raise DecodeError(
            DecodeErrorKind.CORRUPT,
            f"decoded stream ends with a partial frame ({len(raw) % frame_bytes} bytes)",
        )
    view = memoryview(raw)
    return tuple(
        Frame(width=width, height=height, pixels=bytes(view[offset : offset + frame_bytes]))
        for offset in range(0, len(raw), frame_bytes)
    )


DecoderFactory = Callable[[ProcessRunner, Settings], FrameDecoder]

DECODERS: dict[FormatFamily, DecoderFactory] = {
    FormatFamily.ANIMATED_IMAGE: lambda runner, settings: AnimatedImageDecoder(),
    FormatFamily.VIDEO_CONTAINER: lambda runner, settings: VideoContainerDecoder(
        runner=runner, settings=settings
    ),
}


def decode(
    path: str | Path,
    *,
    runner: ProcessRunner | None = None,
    settings: Settings | None = None,
) -> MediaDocument:
    p = Path(path).expanduser()
    media_format = detect_format(p)
    decoder = DECODERS[media_format.family](runner or default_runner(), settings or Settings())
    log.info("Decoding %s as %s", p.name, media_format.value)
    document = decoder.decode(p, media_format)
    log.info(
        "Decoded %d frame(s) at %dx%d, %.0f ms (loop=%s)",
        document.frame_count,
        document.width,
        document.height,
        document.total_duration_ms,
        document.loop_count,
    )
    return document
