"""
Frame compositing for unlustig.

Each output frame is a fresh canvas: the caption band (background plus the
pre-laid-out text) stacked with a copy of the source frame. Source frames
are never modified.

Compositing is a pure function of (frame, layout, style), so frames can be
rendered on a thread pool. Results are written into a preallocated list by
frame index, which keeps the original order without any locking.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from PIL import Image, ImageDraw

from unlustig.domain.layout import LayoutResult
from unlustig.domain.media import Frame
from unlustig.domain.style import CaptionPosition, CaptionStyle
from unlustig.services.layout import load_font
from unlustig.utils.logging import get_logger

log = get_logger(__name__)


def band_rows(layout: LayoutResult, style: CaptionStyle, frame_height: int) -> tuple[int, int]:
    """Rows [start, stop) of the composited canvas covered by the caption band."""
    if style.position is CaptionPosition.TOP:
        return 0, layout.band_height
    return frame_height, frame_height + layout.band_height


def composite(frame: Frame, layout: LayoutResult, style: CaptionStyle) -> Frame:
    if frame.width != layout.band_width:
        raise ValueError(
            f"layout was computed for width {layout.band_width}, frame is {frame.width}"
        )

    canvas = Image.new(
        "RGBA",
        (frame.width, frame.height + layout.band_height),
        style.background_rgba,
    )
    band_top, _ = band_rows(layout, style, frame.height)
    image_top = layout.band_height if style.position is CaptionPosition.TOP else 0
    canvas.paste(frame.to_image(), (0, image_top))

    draw = ImageDraw.Draw(canvas)
    font = load_font(layout.font_path, layout.font_size)
    fill = style.fill_rgba
    outline = style.outline_rgba
    for line in layout.lines:
        if not line.text:
            continue
        # Pillow strokes the outline first, then fills the glyph over it.
        draw.text(
            (line.x, band_top + line.baseline),
            line.text,
            font=font,
            fill=fill,
            anchor="ls",
            stroke_width=style.outline_width,
            stroke_fill=outline,
        )
    return Frame.from_image(canvas)


def composite_all(
    frames: Sequence[Frame],
    layout: LayoutResult,
    style: CaptionStyle,
    *,
    workers: int = 1,
) -> tuple[Frame, ...]:
    results: list[Frame | None] = [None] * len(frames)

    def _render(index: int) -> None:
        results[index] = composite(frames[index], layout, style)

    # Load the font once up front so worker threads only hit the cache.
    load_font(layout.font_path, layout.font_size)

    if workers <= 1 or len(frames) <= 1:
        for index in range(len(frames)):
            _render(index)
    else:
        log.debug("Compositing %d frame(s) on %d worker(s)", len(frames), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="composite") as pool:
            futures = [pool.submit(_render, index) for index in range(len(frames))]
            for future in futures:
                future.result()

    return tuple(frame for frame in results if frame is not None)
