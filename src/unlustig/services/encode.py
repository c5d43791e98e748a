"""
Encoding service for unlustig.

Writes a composited frame sequence, with its timing and loop metadata, to
the destination in the requested format.

Responsibilities:
- Round durations to what the target format can store (never drop frames)
- Write through a temporary file and move it into place on success only
- Report pixel, I/O and transcoder failures as distinct typed errors

Does NOT:
- Choose the destination path (domain/output.py does)
- Optimize the result (services/optimize.py does)
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from fractions import Fraction
from math import gcd
from pathlib import Path
from typing import Callable, Iterator, Protocol

from PIL import Image

from unlustig.config.settings import Settings
from unlustig.domain.artifacts import EncodeRequest, EncodeResult
from unlustig.domain.media import FormatFamily, Frame, MediaFormat
from unlustig.exceptions import (
    DependencyMissingError,
    EncodeError,
    EncodeErrorKind,
    ProcessTimeoutError,
)
from unlustig.utils import ffmpeg
from unlustig.utils.checks import require_binary
from unlustig.utils.logging import get_logger
from unlustig.utils.process import ProcessRunner, default_runner

log = get_logger(__name__)

# GIF stores delays in hundredths of a second.
GIF_TICK_MS = 10
GIF_PALETTE_SIZE = 256
# Palette slots given to rows shared by every frame (the caption band).
SHARED_ROW_COLORS = 96
TRANSPARENT_INDEX = GIF_PALETTE_SIZE - 1
ALPHA_THRESHOLD = 128


@contextmanager
def atomic_destination(destination: Path) -> Iterator[Path]:
    """Yield a temp path beside `destination`; move it into place on success."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=destination.parent,
        prefix=f".{destination.stem}.",
        suffix=destination.suffix,
    )
    os.close(fd)
    tmp = Path(tmp_name)
    try:
        yield tmp
        if tmp.stat().st_size == 0:
            raise EncodeError(
                EncodeErrorKind.IO_FAILURE, f"encoder produced no output: {destination}"
            )
        os.replace(tmp, destination)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def round_to_ticks(duration_ms: float, tick_ms: int) -> int:
    """Nearest multiple of `tick_ms`; positive durations never round to zero."""
    if duration_ms <= 0:
        return 0
    ticks = int(duration_ms / tick_ms + 0.5)
    return max(1, ticks) * tick_ms


def check_frames(request: EncodeRequest) -> tuple[int, int]:
    if not request.frames:
        raise ValueError("nothing to encode: no frames")
    if len(request.durations_ms) != len(request.frames):
        raise ValueError("one duration per frame is required")
    width, height = request.frames[0].size
    for index, frame in enumerate(request.frames):
        if frame.size != (width, height):
            raise EncodeError(
                EncodeErrorKind.UNSUPPORTED_PIXEL_FORMAT,
                f"frame {index} is {frame.width}x{frame.height}, expected {width}x{height}",
            )
    return width, height


class FrameEncoder(Protocol):
    def encode(self, request: EncodeRequest, tmp: Path) -> tuple[float, ...]:
        """Write `request` to `tmp` and return the durations actually stored."""
        ...


def _quantize(image: Image.Image, slots: int) -> tuple[bytes, list[int]]:
    """Median-cut `image` to at most `slots` colors: index bytes and a `slots`-entry palette."""
    # Median cut keeps every color exactly when the image has `slots` or fewer.
    indexed = image.convert("RGB").quantize(colors=slots, method=Image.Quantize.MEDIANCUT)
    palette = list(indexed.getpalette() or [])[: 3 * slots]
    palette += [0] * (3 * slots - len(palette))
    return indexed.tobytes(), palette


def _offset_table(offset: int) -> bytes:
    return bytes(min(index + offset, GIF_PALETTE_SIZE - 1) for index in range(256))


@dataclass
class GifPaletteMapper:
    """
    Converts RGBA frames into palette images for the GIF writer.

    Rows in `shared_rows` hold the same pixels in every frame. They are
    quantized on their own into a fixed slice of the palette, so they come
    out identical in every frame however many colors the rest of the frame
    has. Pixels with alpha below 128 map to one reserved transparent index.
    """

    shared_rows: tuple[int, int] | None = None
    _cache: dict[bytes, tuple[bytes, list[int]]] = field(
        default_factory=dict, init=False, repr=False
    )

    def convert(self, frame: Frame) -> Image.Image:
        image = frame.to_image()
        alpha = image.getchannel("A")
        transparent = alpha.getextrema()[0] < ALPHA_THRESHOLD
        slots = GIF_PALETTE_SIZE - 1 if transparent else GIF_PALETTE_SIZE

        start, stop = self._rows(frame.height)
        if stop - start in (0, frame.height):
            indices, palette = _quantize(image, slots)
        else:
            indices, palette = self._split(image, start, stop, slots)

        indexed = Image.frombytes("P", frame.size, indices)
        if transparent:
            palette += [0, 0, 0]
            mask = alpha.point(lambda a: 255 if a < ALPHA_THRESHOLD else 0)
            indexed.paste(TRANSPARENT_INDEX, mask=mask)
            indexed.info["transparency"] = TRANSPARENT_INDEX
        indexed.putpalette(palette)
        return indexed

    def _rows(self, height: int) -> tuple[int, int]:
        if self.shared_rows is None:
            return 0, 0
        start = max(0, min(self.shared_rows[0], height))
        stop = max(start, min(self.shared_rows[1], height))
        return start, stop

    def _split(
        self, image: Image.Image, start: int, stop: int, slots: int
    ) -> tuple[bytes, list[int]]:
        width, height = image.size
        band = image.crop((0, start, width, stop))
        key = band.tobytes()
        if key not in self._cache:
            self._cache.clear()
            self._cache[key] = _quantize(band, SHARED_ROW_COLORS)
        band_indices, band_palette = self._cache[key]

        rest = Image.new("RGBA", (width, height - (stop - start)))
        if start:
            rest.paste(image.crop((0, 0, width, start)), (0, 0))
        if stop < height:
            rest.paste(image.crop((0, stop, width, height)), (0, start))
        rest_indices, rest_palette = _quantize(rest, slots - SHARED_ROW_COLORS)
        rest_indices = rest_indices.translate(_offset_table(SHARED_ROW_COLORS))

        cut = start * width
        indices = rest_indices[:cut] + band_indices + rest_indices[cut:]
        return indices, band_palette + rest_palette


def _same_picture(previous: Image.Image, current: Image.Image) -> bool:
    """True when the GIF writer would fold `current` into `previous`."""
    if previous.getpalette() == current.getpalette() and previous.info.get(
        "transparency"
    ) == current.info.get("transparency"):
        return previous.tobytes() == current.tobytes()
    return previous.convert("RGBA").tobytes() == current.convert("RGBA").tobytes()


def merge_repeats(
    images: list[Image.Image], durations: list[int]
) -> tuple[list[Image.Image], list[int]]:
    """
    Fold identical consecutive frames into one, summing their durations.

    GIF has no way to store two identical frames in a row (Pillow merges them
    while writing), so the merge is done up front and the real frame list is
    what gets written and reported.
    """
    kept: list[Image.Image] = []
    kept_durations: list[int] = []
    for image, duration in zip(images, durations):
        if kept and _same_picture(kept[-1], image):
            kept_durations[-1] += duration
            continue
        kept.append(image)
        kept_durations.append(duration)
    return kept, kept_durations


@dataclass
class AnimatedImageEncoder:
    """Pillow-based writer for GIF and animated WebP."""

    def encode(self, request: EncodeRequest, tmp: Path) -> tuple[float, ...]:
        if request.target_format is MediaFormat.GIF:
            return self._gif(request, tmp)
        return self._webp(request, tmp)

    def _gif(self, request: EncodeRequest, tmp: Path) -> tuple[float, ...]:
        mapper = GifPaletteMapper(shared_rows=request.shared_rows)
        images, durations = merge_repeats(
            [mapper.convert(frame) for frame in request.frames],
            [round_to_ticks(d, GIF_TICK_MS) for d in request.durations_ms],
        )
        if len(images) < len(request.frames):
            log.info(
                "Merged %d identical consecutive frame(s); GIF keeps %d.",
                len(request.frames) - len(images),
                len(images),
            )
        options: dict = {}
        if request.loop_count is not None:
            options["loop"] = request.loop_count
        images[0].save(
            tmp,
            format="GIF",
            save_all=True,
            append_images=images[1:],
            duration=durations,
            disposal=2,
            optimize=False,
            **options,
        )
        return tuple(float(d) for d in durations)

    def _webp(self, request: EncodeRequest, tmp: Path) -> tuple[float, ...]:
        durations = [round_to_ticks(d, 1) for d in request.durations_ms]
        images = [frame.to_image() for frame in request.frames]
        images[0].save(
            tmp,
            format="WEBP",
            save_all=True,
            append_images=images[1:],
            duration=durations,
            loop=request.loop_count if request.loop_count is not None else 1,
            lossless=True,
            method=4,
        )
        return tuple(float(d) for d in durations)


def plan_video_timing(
    durations_ms: tuple[float, ...],
    frame_rate: Fraction | None,
) -> tuple[Fraction, list[int]]:
    """
    Constant output rate plus a repeat count per frame.

    A known source rate that matches the durations is used as-is. Otherwise
    durations are rounded to centiseconds and the rate is the reciprocal of
    their greatest common divisor, so each frame is shown for its own time.
    """
    if frame_rate is not None:
        expected = 1000.0 / float(frame_rate)
        if all(abs(d - expected) < 0.5 for d in durations_ms):
            return frame_rate, [1] * len(durations_ms)

    ticks = [round_to_ticks(d, GIF_TICK_MS) or GIF_TICK_MS for d in durations_ms]
    step = 0
    for value in ticks:
        step = gcd(step, value)
    rate = Fraction(1000, step)
    return rate, [value // step for value in ticks]


@dataclass
class VideoContainerEncoder:
    """Pipes raw RGBA frames into ffmpeg at a constant rate."""

    runner: ProcessRunner = field(default_factory=default_runner)
    settings: Settings = field(default_factory=Settings)

    def encode(self, request: EncodeRequest, tmp: Path) -> tuple[float, ...]:
        width, height = request.frames[0].size
        rate, repeats = plan_video_timing(request.durations_ms, request.frame_rate)
        if request.loop_count not in (None, 1):
            log.info(
                "Loop count %s has no %s equivalent; ignoring it.",
                request.loop_count,
                request.target_format.value,
            )

        payload = b"".join(frame.pixels * repeat for frame, repeat in zip(request.frames, repeats))
        try:
            ffmpeg_bin = require_binary(
                self.settings.ffmpeg_binary, runner=self.runner, purpose="video encoding"
            )
            cmd = ffmpeg.build_encode_cmd(
                tmp,
                width=width,
                height=height,
                rate=rate,
                media_format=request.target_format,
                ffmpeg=ffmpeg_bin,
            )
            log.debug("ffmpeg cmd: %s", " ".join(cmd))
            result = self.runner.run(cmd, input=payload, timeout=self.settings.transcoder_timeout)
        except DependencyMissingError as exc:
            raise EncodeError(EncodeErrorKind.MISSING_DEPENDENCY, exc.message) from exc
        except ProcessTimeoutError as exc:
            raise EncodeError(EncodeErrorKind.SUBPROCESS_FAILURE, exc.message) from exc

        if not result.ok:
            raise EncodeError(
                EncodeErrorKind.SUBPROCESS_FAILURE,
                f"ffmpeg exited with status {result.returncode}: {result.stderr_text()}",
            )
        frame_ms = 1000.0 / float(rate)
        return tuple(repeat * frame_ms for repeat in repeats)


EncoderFactory = Callable[[ProcessRunner, Settings], FrameEncoder]

ENCODERS: dict[FormatFamily, EncoderFactory] = {
    FormatFamily.ANIMATED_IMAGE: lambda runner, settings: AnimatedImageEncoder(),
    FormatFamily.VIDEO_CONTAINER: lambda runner, settings: VideoContainerEncoder(
        runner=runner, settings=settings
    ),
}


def encode(
    request: EncodeRequest,
    *,
    runner: ProcessRunner | None = None,
    settings: Settings | None = None,
) -> EncodeResult:
    try:
        check_frames(request)
    except ValueError as exc:
        raise EncodeError(EncodeErrorKind.UNSUPPORTED_PIXEL_FORMAT, str(exc)) from exc
    encoder = ENCODERS[request.target_format.family](
        runner or default_runner(), settings or Settings()
    )
    destination = request.destination
    log.info(
        "Encoding %d frame(s) as %s -> %s",
        len(request.frames),
        request.target_format.value,
        destination,
    )
    try:
        with atomic_destination(destination) as tmp:
            durations = encoder.encode(request, tmp)
        size = destination.stat().st_size
    except EncodeError:
        raise
    except (ValueError, TypeError, KeyError) as exc:
        raise EncodeError(
            EncodeErrorKind.UNSUPPORTED_PIXEL_FORMAT,
            f"{request.target_format.value} writer rejected the frames: {exc}",
        ) from exc
    except OSError as exc:
        raise EncodeError(
            EncodeErrorKind.IO_FAILURE, f"could not write {destination}: {exc}"
        ) from exc

    changed = 0
    if len(durations) == len(request.durations_ms):
        changed = sum(1 for a, b in zip(request.durations_ms, durations) if abs(a - b) >= 0.5)
    if changed:
        log.info(
            "Rounded %d frame duration(s) to %s timing precision.",
            changed,
            request.target_format.value,
        )
    return EncodeResult(
        path=destination,
        format=request.target_format,
        frame_count=len(durations),
        durations_ms=durations,
        size_bytes=size,
    )
