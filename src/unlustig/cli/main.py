from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import NoReturn, TypeVar

import typer

from unlustig.config.settings import Settings
from unlustig.domain.job import Job
from unlustig.domain.media import MediaFormat
from unlustig.domain.style import Alignment, CaptionPosition
from unlustig.exceptions import UnlustigError
from unlustig.pipeline import Pipeline
from unlustig.utils.doctor import run_doctor
from unlustig.utils.logging import configure_logging, get_logger

app = typer.Typer(add_completion=False)
log = get_logger(__name__)

E = TypeVar("E", bound=Enum)


def _fail(err: UnlustigError) -> NoReturn:
    typer.echo(f"{err.label()}: {err.message}", err=True)
    raise typer.Exit(code=err.exit_code)


def _run_caption_pipeline(*, settings: Settings, input_path: Path, text: str) -> Job:
    job = Job(settings=settings, input_path=input_path, caption=text)
    return Pipeline().run(job)


def _parse_format(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return MediaFormat.parse(value).value
    except ValueError:
        valid = ", ".join(f.value for f in MediaFormat)
        raise typer.BadParameter(f"Unknown format '{value}'. Use one of: {valid}.")


def _parse_choice(value: str | None, enum_cls: type[E], option: str) -> E | None:
    if value is None:
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise typer.BadParameter(f"Invalid {option} '{value}'. Use one of: {valid}.")


@app.command()
def config() -> None:
    """Print resolved config."""
    s = Settings()
    typer.echo(json.dumps(s.to_public_dict(), indent=2))


@app.command()
def doctor() -> None:
    """Run environment diagnostics."""
    settings = Settings()
    try:
        code = run_doctor(settings)
    except UnlustigError as err:
        _fail(err)
    raise typer.Exit(code=code)


@app.command()
def caption(
    input_path: Path = typer.Argument(..., help="GIF, WebP or video file to caption."),
    text: str = typer.Argument(..., help="Caption text. A literal \\n starts a new line."),
    output_dir: str = typer.Option(None, help="Output directory (overrides config)."),
    name: str = typer.Option(None, help="Output file name without extension (overrides config)."),
    output_format: str = typer.Option(
        None,
        "--format",
        help="Output format: gif, webp, mp4, mov, avi, mkv, webm. Defaults to the input's.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing output file."),
    optimize: str = typer.Option(None, help="gifsicle optimization level: O1, O2, O3."),
    lossy: int = typer.Option(None, help="gifsicle lossy compression (e.g. 20, 40, 60, 80)."),
    reduce: bool = typer.Option(False, "--reduce", help="Reduce the GIF to 256 colors."),
    font: str = typer.Option(None, help="Font file (overrides config)."),
    font_size: int = typer.Option(None, help="Font size in pixels; disables the default sizing."),
    fill: str = typer.Option(None, help="Text color (overrides config)."),
    outline: str = typer.Option(None, help="Text outline color (overrides config)."),
    outline_width: int = typer.Option(None, help="Text outline width in pixels."),
    background: str = typer.Option(None, help="Caption band color (overrides config)."),
    align: str = typer.Option(None, help="Text alignment: left, center, right."),
    position: str = typer.Option(None, help="Band position: top, bottom."),
    workers: int = typer.Option(None, help="Compositing threads (overrides config)."),
    log_level: str = typer.Option(None, help="Log level (overrides config)."),
) -> None:
    """Add a caption band to an animated image or video."""
    settings = Settings()

    # Apply CLI overrides on top of env/.env settings
    if output_dir is not None:
        settings.output_dir = output_dir
    if name is not None:
        settings.output_name = name
    if output_format is not None:
        settings.output_format = _parse_format(output_format)
    if force:
        settings.overwrite = True
    if optimize is not None:
        settings.optimize_level = optimize
    if lossy is not None:
        settings.lossy = lossy
    if reduce:
        settings.reduce_colors = True
    if font is not None:
        settings.font_path = font
    if font_size is not None:
        settings.font_size = font_size
    if fill is not None:
        settings.fill_color = fill
    if outline is not None:
        settings.outline_color = outline
    if outline_width is not None:
        settings.outline_width = outline_width
    if background is not None:
        settings.background_color = background
    if align is not None:
        settings.alignment = _parse_choice(align, Alignment, "alignment")
    if position is not None:
        settings.position = _parse_choice(position, CaptionPosition, "position")
    if workers is not None:
        settings.workers = workers

    # Configure logging after overrides so we use the final resolved level
    effective_level = log_level or settings.log_level
    configure_logging(effective_level)

    try:
        job = _run_caption_pipeline(
            settings=settings,
            input_path=input_path,
            text=text.replace("\\n", "\n"),
        )
    except UnlustigError as err:
        _fail(err)

    typer.echo(f"✅ Done. Output: {job.output_path}")
    outcome = job.artifacts.optimization
    if outcome is not None and outcome.success:
        typer.echo(f"📦 Optimized: {outcome.original_size} -> {outcome.final_size} bytes")
    elif outcome is not None and outcome.fallback:
        typer.echo(f"⚠️ Optimization skipped: {outcome.reason}")


def _main() -> None:
    app()


if __name__ == "__main__":
    _main()
