"""
Pipeline orchestration for unlustig.

The pipeline executes a single captioning run:

1) Decode the input into frames
2) Lay out the caption (once)
3) Composite the caption band onto every frame
4) Encode the frames to the destination
5) Optionally optimize the encoded file

Responsibilities:
- Coordinate stage order and pass data between stages
- Resolve the target format and destination path
- Record artifacts and step timings on the Job

Does NOT:
- Implement decoding, drawing or encoding (services/ do)
- Swallow stage errors: a failed decode/layout/encode aborts the run
  before anything is written to the destination
"""

from __future__ import annotations

from unlustig.domain.artifacts import Artifacts, EncodeRequest, SourceInfo
from unlustig.domain.job import Job
from unlustig.domain.media import MediaFormat
from unlustig.domain.output import resolve_output_path
from unlustig.exceptions import ConfigurationError
from unlustig.services.compose import band_rows, composite_all
from unlustig.services.decode import decode
from unlustig.services.encode import encode
from unlustig.services.layout import layout
from unlustig.services.optimize import GifsicleOptimizer, parse_level, validate_lossy
from unlustig.utils.logging import get_logger
from unlustig.utils.process import ProcessRunner, default_runner
from unlustig.utils.timing import StepTimer, utc_now

log = get_logger(__name__)


def resolve_target_format(job: Job, source: MediaFormat) -> MediaFormat:
    if job.target_format is not None:
        return job.target_format
    configured = job.settings.output_format
    if not configured:
        return source
    try:
        return MediaFormat.parse(configured)
    except ValueError as exc:
        valid = ", ".join(f.value for f in MediaFormat)
        raise ConfigurationError(
            f"Unknown output format '{configured}'. Use one of: {valid}."
        ) from exc


class Pipeline:
    """
    Runs decode -> layout -> composite -> encode -> optimize for one Job.

    The process runner is injected so tests can replace ffmpeg/gifsicle.
    """

    def __init__(self, *, runner: ProcessRunner | None = None) -> None:
        self.runner = runner or default_runner()

    def run(self, job: Job) -> Job:
        settings = job.settings
        timer = StepTimer(clock=utc_now)
        job.artifacts = Artifacts()
        # Bad optimizer options must fail before any work is done.
        parse_level(settings.optimize_level)
        validate_lossy(settings.lossy)

        try:
            with timer.step("decode"):
                document = decode(job.input_path, runner=self.runner, settings=settings)
                job.artifacts.source = SourceInfo(
                    path=job.input_path,
                    format=document.source_format,
                    width=document.width,
                    height=document.height,
                    frame_count=document.frame_count,
                )

            target = resolve_target_format(job, document.source_format)
            if job.output_path is None:
                job.output_path = resolve_output_path(
                    settings.output_dir,
                    settings.output_name,
                    target,
                    overwrite=settings.overwrite,
                    input_path=job.input_path,
                )
            job.target_format = target
            style = job.caption_style()

            with timer.step("layout"):
                caption_layout = layout(
                    job.caption,
                    style,
                    document.width,
                    canvas_height=document.height,
                )
                job.artifacts.layout = caption_layout

            with timer.step("composite"):
                frames = composite_all(
                    document.frames,
                    caption_layout,
                    style,
                    workers=settings.workers,
                )

            with timer.step("encode"):
                job.artifacts.output = encode(
                    EncodeRequest(
                        frames=frames,
                        durations_ms=document.durations_ms,
                        loop_count=document.loop_count,
                        target_format=target,
                        destination=job.output_path,
                        frame_rate=document.frame_rate,
                        shared_rows=band_rows(caption_layout, style, document.height),
                    ),
                    runner=self.runner,
                    settings=settings,
                )
            del document, frames

            with timer.step("optimize"):
                optimizer = GifsicleOptimizer(
                    runner=self.runner,
                    gifsicle=settings.gifsicle_binary,
                    timeout=settings.optimizer_timeout,
                )
                job.artifacts.optimization = optimizer.optimize(
                    job.output_path,
                    settings.optimize_level,
                    lossy=settings.lossy,
                    reduce_colors=settings.reduce_colors,
                )

            log.info("Captioned %s -> %s", job.input_path.name, job.output_path)
            return job
        finally:
            job.steps = list(timer.steps)
            log.info("Step timings: %s", timer.summary())
