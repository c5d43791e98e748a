from __future__ import annotations

from dataclasses import dataclass

BBox = tuple[int, int, int, int]


@dataclass(frozen=True)
class PositionedLine:
    text: str
    x: int
    baseline: int
    bbox: BBox


@dataclass(frozen=True)
class LayoutResult:
    """Caption lines positioned inside a band of `band_width` x `band_height`."""

    lines: tuple[PositionedLine, ...]
    font_size: int
    font_path: str | None
    band_width: int
    band_height: int
    line_height: int
    text_height: int

    @property
    def bbox(self) -> BBox:
        lefts, tops, rights, bottoms = zip(*(line.bbox for line in self.lines))
        return (min(lefts), min(tops), max(rights), max(bottoms))

    def fits_band(self) -> bool:
        left, top, right, bottom = self.bbox
        return left >= 0 and top >= 0 and right <= self.band_width and bottom <= self.band_height
