from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from unlustig.domain.style import Alignment, CaptionPosition, CaptionStyle


class Settings(BaseSettings):
    """
    Runtime configuration for unlustig.

    All settings are loaded from environment variables with the
    `UNLUSTIG_` prefix and optional `.env` support. CLI options are
    applied on top after loading.
    """

    model_config = SettingsConfigDict(
        env_prefix="UNLUSTIG_",
        env_file=".env",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    output_dir: str = Field(
        default=".",
        description="Directory the captioned file is written to.",
    )
    output_name: str = Field(
        default="out",
        description="Output file name; the target format's extension is appended.",
    )
    overwrite: bool = Field(
        default=False,
        description="Replace an existing output file instead of prefixing a random name.",
    )
    output_format: str | None = Field(
        default=None,
        description="Target format (gif, webp, mp4, mov, avi, mkv, webm). Defaults to the input's.",
    )
    workers: int = Field(
        default=4,
        description="Worker threads used to composite frames.",
    )

    # ------------------------------------------------------------------
    # Caption style
    # ------------------------------------------------------------------
    font_path: str | None = Field(
        default=None,
        description="TrueType/OpenType font file. Defaults to Pillow's bundled font.",
    )
    font_size: int | None = Field(
        default=None,
        description="Font size in pixels. Defaults to one eighth of the frame height.",
    )
    auto_fit: bool = Field(
        default=True,
        description="Shrink the font until the caption fits the band.",
    )
    min_font_size: int = Field(default=8, description="Smallest size auto-fit may use.")
    font_step: int = Field(default=2, description="Auto-fit decrement in pixels.")
    fill_color: str = Field(default="black", description="Text color.")
    outline_color: str = Field(default="white", description="Text outline color.")
    outline_width: int = Field(default=0, description="Text outline width in pixels.")
    background_color: str = Field(default="white", description="Caption band color.")
    alignment: Alignment = Field(default=Alignment.CENTER, description="left, center or right.")
    position: CaptionPosition = Field(
        default=CaptionPosition.TOP,
        description="Whether the band is added above or below the frame.",
    )
    band_ratio: float = Field(
        default=0.3,
        description="Caption band height as a fraction of the frame height.",
    )
    margin_ratio: float = Field(
        default=0.05,
        description="Horizontal text margin as a fraction of the frame width.",
    )
    line_spacing: float = Field(
        default=0.2,
        description="Extra leading between lines as a fraction of the line height.",
    )

    # ------------------------------------------------------------------
    # Optimizer (gifsicle)
    # ------------------------------------------------------------------
    optimize_level: str | None = Field(
        default=None,
        description="gifsicle optimization level: O1, O2 or O3.",
    )
    lossy: int | None = Field(
        default=None,
        description="gifsicle --lossy value (20, 40, 60, 80).",
    )
    reduce_colors: bool = Field(
        default=False,
        description="Pass --colors 256 to gifsicle.",
    )
    optimizer_timeout: float = Field(
        default=120.0,
        description="Seconds before the optimizer is abandoned.",
    )

    # ------------------------------------------------------------------
    # External tools
    # ------------------------------------------------------------------
    ffmpeg_binary: str = Field(default="ffmpeg", description="ffmpeg executable.")
    ffprobe_binary: str = Field(default="ffprobe", description="ffprobe executable.")
    gifsicle_binary: str = Field(default="gifsicle", description="gifsicle executable.")
    transcoder_timeout: float = Field(
        default=600.0,
        description="Seconds before an ffmpeg/ffprobe call is abandoned.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )

    def caption_style(self) -> CaptionStyle:
        return CaptionStyle(
            font_path=self.font_path,
            font_size=self.font_size,
            auto_fit=self.auto_fit,
            min_font_size=self.min_font_size,
            font_step=self.font_step,
            fill_color=self.fill_color,
            outline_color=self.outline_color,
            outline_width=self.outline_width,
            background_color=self.background_color,
            alignment=self.alignment,
            band_ratio=self.band_ratio,
            margin_ratio=self.margin_ratio,
            line_spacing=self.line_spacing,
            position=self.position,
        )

    def to_public_dict(self) -> dict:
        """Settings as plain JSON-friendly values for CLI display."""
        return self.model_dump(mode="json")
