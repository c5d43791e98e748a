from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from PIL import ImageColor

from unlustig.exceptions import LayoutError, LayoutErrorKind


class Alignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class CaptionPosition(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


Color = tuple[int, int, int, int]


def parse_color(value: str) -> Color:
    """Accept any Pillow color string (`#fff`, `white`, `rgb(...)`) as RGBA."""
    try:
        rgb = ImageColor.getrgb(value)
    except (ValueError, AttributeError) as exc:
        raise LayoutError(LayoutErrorKind.INVALID_STYLE, f"invalid color '{value}'") from exc
    if len(rgb) == 3:
        return (rgb[0], rgb[1], rgb[2], 255)
    return (rgb[0], rgb[1], rgb[2], rgb[3])


@dataclass(frozen=True)
class CaptionStyle:
    """
    Visual parameters of the caption band.

    Defaults reproduce the classic meme look: black text on a white band
    above the image, sized at one eighth of the image height.
    """

    font_path: str | None = None
    font_size: int | None = None
    auto_fit: bool = True
    min_font_size: int = 8
    font_step: int = 2
    fill_color: str = "black"
    outline_color: str = "white"
    outline_width: int = 0
    background_color: str = "white"
    alignment: Alignment = Alignment.CENTER
    band_ratio: float = 0.3
    margin_ratio: float = 0.05
    line_spacing: float = 0.2
    position: CaptionPosition = CaptionPosition.TOP

    def validate(self) -> CaptionStyle:
        problems: list[str] = []
        if self.font_size is not None and self.font_size <= 0:
            problems.append("font_size must be positive")
        if self.min_font_size <= 0:
            problems.append("min_font_size must be positive")
        if self.font_step <= 0:
            problems.append("font_step must be positive")
        if self.outline_width < 0:
            problems.append("outline_width must not be negative")
        if not 0.0 < self.band_ratio <= 4.0:
            problems.append("band_ratio must be in (0, 4]")
        if not 0.0 <= self.margin_ratio < 0.5:
            problems.append("margin_ratio must be in [0, 0.5)")
        if self.line_spacing < 0:
            problems.append("line_spacing must not be negative")
        if self.font_path is not None and not Path(self.font_path).expanduser().is_file():
            problems.append(f"font file not found: {self.font_path}")
        if problems:
            raise LayoutError(LayoutErrorKind.INVALID_STYLE, "; ".join(problems))
        for color in (self.fill_color, self.outline_color, self.background_color):
            parse_color(color)
        return self

    @property
    def fill_rgba(self) -> Color:
        return parse_color(self.fill_color)

    @property
    def outline_rgba(self) -> Color:
        return parse_color(self.outline_color)

    @property
    def background_rgba(self) -> Color:
        return parse_color(self.background_color)
