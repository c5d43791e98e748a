"""
Caption layout for unlustig.

Computes, once per run, where every caption line goes inside the caption
band. The result is reused unchanged for every frame, so this module is
pure: the same caption, style and canvas always give the same layout.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Callable

from PIL import ImageFont

from unlustig.domain.layout import LayoutResult, PositionedLine
from unlustig.domain.style import Alignment, CaptionStyle
from unlustig.exceptions import LayoutError, LayoutErrorKind
from unlustig.utils.logging import get_logger

log = get_logger(__name__)

# Classic caption size: one eighth of the image height.
DEFAULT_SIZE_DIVISOR = 8

Font = ImageFont.FreeTypeFont | ImageFont.ImageFont


@lru_cache(maxsize=64)
def load_font(font_path: str | None, size: int) -> Font:
    try:
        if font_path is None:
            return ImageFont.load_default(size=size)
        return ImageFont.truetype(font_path, size)
    except OSError as exc:
        raise LayoutError(
            LayoutErrorKind.INVALID_STYLE, f"could not load font {font_path or 'default'}: {exc}"
        ) from exc


def band_height_for(canvas_height: int, style: CaptionStyle) -> int:
    height = max(2, round(canvas_height * style.band_ratio))
    # Rounded up to even: yuv420p video needs even dimensions.
    return height + height % 2


def text_width(font: Font, text: str, stroke: int) -> int:
    left, _, right, _ = font.getbbox(text, stroke_width=stroke, anchor="ls")
    return right - left


def hard_break(word: str, fits: Callable[[str], bool]) -> list[str]:
    pieces: list[str] = []
    current = ""
    for char in word:
        if current and not fits(current + char):
            pieces.append(current)
            current = char
        else:
            current += char
    if current:
        pieces.append(current)
    return pieces


def wrap_paragraph(words: list[str], fits: Callable[[str], bool]) -> list[str]:
    """Greedy word wrap; words wider than a line are broken by character."""
    if not words:
        return [""]
    lines: list[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if fits(candidate):
            current = candidate
            continue
        if current:
            lines.append(current)
            current = ""
        if fits(word):
            current = word
            continue
        pieces = hard_break(word, fits)
        lines.extend(pieces[:-1])
        current = pieces[-1]
    if current:
        lines.append(current)
    return lines


def _attempt(
    paragraphs: list[list[str]],
    style: CaptionStyle,
    size: int,
    canvas_width: int,
    band_height: int,
) -> LayoutResult | None:
    font = load_font(style.font_path, size)
    stroke = style.outline_width
    margin = round(canvas_width * style.margin_ratio)
    available = canvas_width - 2 * margin
    if available <= 0:
        return None

    def fits(text: str) -> bool:
        return text_width(font, text, stroke) <= available

    wrapped: list[str] = []
    for words in paragraphs:
        wrapped.extend(wrap_paragraph(words, fits))
    if not all(fits(line) for line in wrapped):
        return None

    ascent, descent = font.getmetrics()
    line_height = ascent + descent + 2 * stroke
    leading = round(line_height * style.line_spacing)
    text_height = len(wrapped) * line_height + (len(wrapped) - 1) * leading
    if text_height > band_height:
        return None

    top = (band_height - text_height) // 2
    lines: list[PositionedLine] = []
    for index, text in enumerate(wrapped):
        baseline = top + index * (line_height + leading) + stroke + ascent
        left, glyph_top, right, bottom = font.getbbox(text, stroke_width=stroke, anchor="ls")
        width = right - left
        if style.alignment is Alignment.LEFT:
            x = margin - left
        elif style.alignment is Alignment.RIGHT:
            x = margin + available - width - left
        else:
            x = margin + (available - width) // 2 - left
        lines.append(
            PositionedLine(
                text=text,
                x=x,
                baseline=baseline,
                bbox=(x + left, baseline + glyph_top, x + right, baseline + bottom),
            )
        )

    result = LayoutResult(
        lines=tuple(lines),
        font_size=size,
        font_path=style.font_path,
        band_width=canvas_width,
        band_height=band_height,
        line_height=line_height,
        text_height=text_height,
    )
    # Glyphs may reach past the font's ascent/descent (accents, swashes).
    if not result.fits_band():
        return None
    return result


def layout(
    caption: str,
    style: CaptionStyle,
    canvas_width: int,
    *,
    canvas_height: int,
) -> LayoutResult:
    """
    Position `caption` inside a band as wide as the canvas.

    With `style.auto_fit` the font shrinks by `font_step` until the wrapped
    text fits the band, stopping at `min_font_size`. Text that cannot fit
    raises `LayoutError(TEXT_TOO_LARGE)`; it is never clipped.
    """
    style.validate()
    text = caption.strip()
    if not text:
        raise LayoutError(LayoutErrorKind.EMPTY_CAPTION, "caption is empty")
    if canvas_width <= 0 or canvas_height <= 0:
        raise LayoutError(
            LayoutErrorKind.INVALID_STYLE,
            f"canvas {canvas_width}x{canvas_height} has no area",
        )

    paragraphs = [line.split() for line in text.split("\n")]
    band_height = band_height_for(canvas_height, style)
    size = style.font_size or max(style.min_font_size, canvas_height // DEFAULT_SIZE_DIVISOR)

    while True:
        result = _attempt(paragraphs, style, size, canvas_width, band_height)
        if result is not None:
            log.debug(
                "Caption laid out in %d line(s) at %dpx inside a %dx%d band",
                len(result.lines),
                size,
                canvas_width,
                band_height,
            )
            return result
        if not style.auto_fit or size <= style.min_font_size:
            raise LayoutError(
                LayoutErrorKind.TEXT_TOO_LARGE,
                f"caption does not fit a {canvas_width}x{band_height} band "
                f"at {size}px (minimum {style.min_font_size}px)",
            )
        size = max(style.min_font_size, size - style.font_step)
