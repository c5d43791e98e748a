from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import pytest
import typer.testing
from PIL import Image

from unlustig.utils.process import ProcessResult


def _patch_clirunner() -> None:
    if "mix_stderr" in inspect.signature(typer.testing.CliRunner).parameters:
        return

    class PatchedCliRunner(typer.testing.CliRunner):
        def __init__(self, *args, **kwargs):  # noqa: ANN002, ANN003
            kwargs.pop("mix_stderr", None)
            super().__init__(*args, **kwargs)

    typer.testing.CliRunner = PatchedCliRunner


_patch_clirunner()


Handler = Callable[[list[str], bytes | None], ProcessResult]


@dataclass
class FakeRunner:
    """Records commands and answers them with a handler; never spawns a process."""

    handler: Handler | None = None
    available: set[str] = field(default_factory=lambda: {"ffmpeg", "ffprobe", "gifsicle"})
    calls: list[list[str]] = field(default_factory=list)
    inputs: list[bytes | None] = field(default_factory=list)

    def run(self, cmd, *, input=None, timeout=None) -> ProcessResult:  # noqa: ANN001
        args = [str(part) for part in cmd]
        self.calls.append(args)
        self.inputs.append(input)
        if self.handler is None:
            return ProcessResult(args=tuple(args), returncode=0)
        return self.handler(args, input)

    def which(self, binary: str) -> str | None:
        return f"/usr/bin/{binary}" if binary in self.available else None


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


def color_for(index: int) -> tuple[int, int, int]:
    return ((index * 37) % 256, (index * 91) % 256, (255 - index * 23) % 256)


def write_gif(
    path: Path,
    *,
    frames: int = 10,
    size: tuple[int, int] = (100, 100),
    duration: int | list[int] = 100,
    loop: int | None = 0,
) -> Path:
    """Solid-color frames, each a different color so Pillow keeps them all."""
    images = [Image.new("RGB", size, color_for(i)) for i in range(frames)]
    options = {} if loop is None else {"loop": loop}
    images[0].save(
        path,
        format="GIF",
        save_all=True,
        append_images=images[1:],
        duration=duration,
        disposal=2,
        **options,
    )
    return path


@pytest.fixture
def make_gif(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str = "input.gif", **kwargs) -> Path:  # noqa: ANN003
        return write_gif(tmp_path / name, **kwargs)

    return _make
