from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from unlustig.config.settings import Settings
from unlustig.domain.artifacts import Artifacts
from unlustig.domain.media import MediaFormat
from unlustig.domain.style import CaptionStyle
from unlustig.utils.timing import StepTiming


@dataclass
class Job:
    settings: Settings
    input_path: Path
    caption: str
    output_path: Path | None = None
    target_format: MediaFormat | None = None
    style: CaptionStyle | None = None
    artifacts: Artifacts = field(default_factory=Artifacts)
    steps: list[StepTiming] = field(default_factory=list)

    def caption_style(self) -> CaptionStyle:
        return self.style or self.settings.caption_style()
