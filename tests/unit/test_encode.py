from __future__ import annotations

from fractions import Fraction
from pathlib import Path

import pytest
from PIL import Image, features

from unlustig.domain.artifacts import EncodeRequest
from unlustig.domain.media import Frame, MediaFormat
from unlustig.exceptions import EncodeError, EncodeErrorKind
from unlustig.services.decode import decode
from unlustig.services.encode import encode, plan_video_timing, round_to_ticks
from unlustig.utils.process import ProcessResult


def _frames(count: int, size: tuple[int, int] = (100, 130)) -> tuple[Frame, ...]:
    return tuple(
        Frame.from_image(Image.new("RGBA", size, ((i * 40) % 256, 255 - i * 20, 60, 255)))
        for i in range(count)
    )


def _request(destination: Path, fmt: MediaFormat, **overrides) -> EncodeRequest:  # noqa: ANN003
    values = {
        "frames": _frames(3),
        "durations_ms": (100.0, 100.0, 100.0),
        "loop_count": 0,
        "target_format": fmt,
        "destination": destination,
    }
    values.update(overrides)
    return EncodeRequest(**values)


def _writes_output(args, _input):  # noqa: ANN001
    Path(args[-1]).write_bytes(b"\x00\x00\x00\x18ftypisom" + b"\x00" * 32)
    return ProcessResult(args=tuple(args), returncode=0)


def test_gif_keeps_frame_count_durations_and_loop(tmp_path: Path) -> None:
    out = tmp_path / "out.gif"
    request = _request(out, MediaFormat.GIF, frames=_frames(10), durations_ms=(100.0,) * 10)

    result = encode(request)

    assert result.path == out
    assert result.frame_count == 10
    assert result.size_bytes == out.stat().st_size
    document = decode(out)
    assert document.frame_count == 10
    assert document.durations_ms == (100.0,) * 10
    assert document.loop_count == 0
    assert (document.width, document.height) == (100, 130)


def test_gif_durations_round_to_centiseconds(tmp_path: Path) -> None:
    out = tmp_path / "out.gif"
    request = _request(out, MediaFormat.GIF, durations_ms=(33.0, 47.0, 4.0))

    result = encode(request)

    assert result.durations_ms == (30.0, 50.0, 10.0)
    assert decode(out).durations_ms == (30.0, 50.0, 10.0)


def test_gif_without_loop_count_plays_once(tmp_path: Path) -> None:
    out = tmp_path / "once.gif"
    encode(_request(out, MediaFormat.GIF, loop_count=None))
    assert decode(out).loop_count is None


@pytest.mark.skipif(not features.check("webp"), reason="Pillow built without WebP")
def test_webp_keeps_millisecond_durations(tmp_path: Path) -> None:
    out = tmp_path / "out.webp"
    request = _request(out, MediaFormat.WEBP, durations_ms=(40.0, 80.0, 120.0), loop_count=3)

    encode(request)

    document = decode(out)
    assert document.source_format is MediaFormat.WEBP
    assert document.frame_count == 3
    assert document.durations_ms == (40.0, 80.0, 120.0)
    assert document.loop_count == 3
    assert document.frames[1].pixels == request.frames[1].pixels


def test_video_pipes_raw_frames_at_a_constant_rate(tmp_path: Path, fake_runner) -> None:
    out = tmp_path / "out.mp4"
    fake_runner.handler = _writes_output
    request = _request(out, MediaFormat.MP4)

    result = encode(request, runner=fake_runner)

    assert out.exists()
    cmd = fake_runner.calls[0]
    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[cmd.index("-s") + 1] == "100x130"
    assert cmd[cmd.index("-r") + 1] == "10"
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[-1] != str(out)
    assert fake_runner.inputs[0] == b"".join(frame.pixels for frame in request.frames)
    assert result.durations_ms == (100.0, 100.0, 100.0)


def test_video_repeats_frames_for_variable_durations(tmp_path: Path, fake_runner) -> None:
    out = tmp_path / "out.webm"
    fake_runner.handler = _writes_output
    request = _request(out, MediaFormat.WEBM, durations_ms=(100.0, 200.0, 50.0))

    result = encode(request, runner=fake_runner)

    cmd = fake_runner.calls[0]
    assert cmd[cmd.index("-r") + 1] == "20"
    assert cmd[cmd.index("-c:v") + 1] == "libvpx-vp9"
    frame_bytes = len(request.frames[0].pixels)
    assert len(fake_runner.inputs[0]) == 7 * frame_bytes
    assert result.durations_ms == (100.0, 200.0, 50.0)


def test_failed_transcoder_leaves_no_destination(tmp_path: Path, fake_runner) -> None:
    out = tmp_path / "out.mp4"

    def handler(args, _input):  # noqa: ANN001
        Path(args[-1]).write_bytes(b"partial")
        return ProcessResult(args=tuple(args), returncode=1, stderr=b"encoder exploded")

    fake_runner.handler = handler
    with pytest.raises(EncodeError) as exc_info:
        encode(_request(out, MediaFormat.MP4), runner=fake_runner)

    assert exc_info.value.kind is EncodeErrorKind.SUBPROCESS_FAILURE
    assert "encoder exploded" in exc_info.value.message
    assert list(tmp_path.iterdir()) == []


def test_failed_encode_keeps_existing_destination(tmp_path: Path, fake_runner) -> None:
    out = tmp_path / "out.mp4"
    out.write_bytes(b"previous output")
    fake_runner.handler = lambda args, _input: ProcessResult(args=tuple(args), returncode=1)

    with pytest.raises(EncodeError):
        encode(_request(out, MediaFormat.MP4), runner=fake_runner)

    assert out.read_bytes() == b"previous output"
    assert list(tmp_path.iterdir()) == [out]


def test_empty_transcoder_output_is_io_failure(tmp_path: Path, fake_runner) -> None:
    out = tmp_path / "out.mkv"
    with pytest.raises(EncodeError) as exc_info:
        encode(_request(out, MediaFormat.MKV), runner=fake_runner)
    assert exc_info.value.kind is EncodeErrorKind.IO_FAILURE
    assert not out.exists()


def test_missing_ffmpeg_is_missing_dependency(tmp_path: Path, fake_runner) -> None:
    fake_runner.available = set()
    with pytest.raises(EncodeError) as exc_info:
        encode(_request(tmp_path / "out.avi", MediaFormat.AVI), runner=fake_runner)
    assert exc_info.value.kind is EncodeErrorKind.MISSING_DEPENDENCY
    assert exc_info.value.exit_code == 3


def test_unwritable_destination_is_io_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(EncodeError) as exc_info:
        encode(_request(blocker / "out.gif", MediaFormat.GIF))
    assert exc_info.value.kind is EncodeErrorKind.IO_FAILURE


def test_mismatched_frame_sizes_are_rejected(tmp_path: Path) -> None:
    frames = _frames(1, size=(10, 10)) + _frames(1, size=(12, 10))
    request = _request(
        tmp_path / "out.gif",
        MediaFormat.GIF,
        frames=frames,
        durations_ms=(100.0, 100.0),
    )
    with pytest.raises(EncodeError) as exc_info:
        encode(request)
    assert exc_info.value.kind is EncodeErrorKind.UNSUPPORTED_PIXEL_FORMAT
    assert not (tmp_path / "out.gif").exists()


def test_round_to_ticks_never_drops_a_frame() -> None:
    assert round_to_ticks(4, 10) == 10
    assert round_to_ticks(15, 10) == 20
    assert round_to_ticks(104, 10) == 100
    assert round_to_ticks(0, 10) == 0


def test_plan_video_timing_prefers_the_source_rate() -> None:
    rate, repeats = plan_video_timing((1000 / 30,) * 4, Fraction(30))
    assert rate == Fraction(30)
    assert repeats == [1, 1, 1, 1]

    rate, repeats = plan_video_timing((100.0, 200.0, 50.0), None)
    assert rate == Fraction(20)
    assert repeats == [2, 4, 1]


def _noisy_frame(size: tuple[int, int]) -> Image.Image:
    return Image.merge("RGB", [Image.effect_noise(size, 80) for _ in range(3)]).convert("RGBA")


def _gradient_band(width: int, height: int) -> Image.Image:
    band = Image.new("RGBA", (width, height))
    band.putdata(
        [
            ((x * 7) % 256, (y * 13) % 256, (x * y) % 256, 255)
            for y in range(height)
            for x in range(width)
        ]
    )
    return band


def test_gif_shared_rows_are_identical_on_every_frame(tmp_path: Path) -> None:
    band = _gradient_band(100, 30)
    frames = []
    for _ in range(5):
        canvas = _noisy_frame((100, 130))
        canvas.paste(band, (0, 0))
        frames.append(Frame.from_image(canvas))
    out = tmp_path / "out.gif"
    request = _request(
        out,
        MediaFormat.GIF,
        frames=tuple(frames),
        durations_ms=(100.0,) * 5,
        shared_rows=(0, 30),
    )

    result = encode(request)

    assert result.frame_count == 5
    document = decode(out)
    assert document.frame_count == 5
    band_bytes = 100 * 4 * 30
    assert len({frame.pixels[:band_bytes] for frame in document.frames}) == 1
    assert len({frame.pixels[band_bytes:] for frame in document.frames}) == 5


def test_gif_shared_rows_at_the_bottom(tmp_path: Path) -> None:
    band = _gradient_band(60, 20)
    frames = []
    for _ in range(3):
        canvas = _noisy_frame((60, 80))
        canvas.paste(band, (0, 60))
        frames.append(Frame.from_image(canvas))
    out = tmp_path / "bottom.gif"

    encode(
        _request(
            out,
            MediaFormat.GIF,
            frames=tuple(frames),
            durations_ms=(100.0,) * 3,
            shared_rows=(60, 80),
        )
    )

    document = decode(out)
    offset = 60 * 60 * 4
    assert len({frame.pixels[offset:] for frame in document.frames}) == 1


def test_gif_transparent_pixels_survive(tmp_path: Path) -> None:
    image = Image.new("RGBA", (20, 20), (200, 30, 30, 255))
    image.paste((0, 0, 0, 0), (0, 0, 10, 20))
    other = Image.new("RGBA", (20, 20), (30, 200, 30, 255))
    out = tmp_path / "alpha.gif"

    encode(
        _request(
            out,
            MediaFormat.GIF,
            frames=(Frame.from_image(image), Frame.from_image(other)),
            durations_ms=(100.0, 100.0),
        )
    )

    first = decode(out).frames[0].to_image()
    assert first.getpixel((2, 2))[3] == 0
    assert first.getpixel((15, 15)) == (200, 30, 30, 255)


def test_identical_consecutive_gif_frames_are_reported_as_written(tmp_path: Path) -> None:
    a, b = _frames(2)
    out = tmp_path / "repeat.gif"
    request = _request(
        out, MediaFormat.GIF, frames=(a, a, b), durations_ms=(100.0, 200.0, 100.0)
    )

    result = encode(request)

    assert result.frame_count == 2
    assert result.durations_ms == (300.0, 100.0)
    document = decode(out)
    assert document.frame_count == result.frame_count
    assert document.durations_ms == result.durations_ms
    assert document.frames[0].pixels == a.pixels
    assert document.frames[1].pixels == b.pixels


def _write_webp(path: Path, durations: list[int], loop: int) -> Path:
    images = [frame.to_image() for frame in _frames(len(durations), size=(40, 30))]
    images[0].save(
        path,
        format="WEBP",
        save_all=True,
        append_images=images[1:],
        duration=durations,
        loop=loop,
        lossless=True,
    )
    return path


@pytest.mark.skipif(not features.check("webp"), reason="Pillow built without WebP")
def test_webp_decode_encode_round_trip(tmp_path: Path) -> None:
    source = decode(_write_webp(tmp_path / "in.webp", [40, 80, 120], loop=2))
    assert source.source_format is MediaFormat.WEBP
    assert source.frame_count == 3
    assert source.durations_ms == (40.0, 80.0, 120.0)
    assert source.loop_count == 2

    out = tmp_path / "out.webp"
    result = encode(
        EncodeRequest(
            frames=source.frames,
            durations_ms=source.durations_ms,
            loop_count=source.loop_count,
            target_format=MediaFormat.WEBP,
            destination=out,
        )
    )

    assert result.frame_count == 3
    again = decode(out)
    assert again.frame_count == 3
    assert again.durations_ms == (40.0, 80.0, 120.0)
    assert again.loop_count == 2
    assert [f.pixels for f in again.frames] == [f.pixels for f in source.frames]


@pytest.mark.skipif(not features.check("webp"), reason="Pillow built without WebP")
def test_webp_to_gif_rounds_durations_to_centiseconds(tmp_path: Path) -> None:
    source = decode(_write_webp(tmp_path / "in.webp", [33, 47, 104], loop=0))
    assert source.durations_ms == (33.0, 47.0, 104.0)

    out = tmp_path / "out.gif"
    result = encode(
        EncodeRequest(
            frames=source.frames,
            durations_ms=source.durations_ms,
            loop_count=source.loop_count,
            target_format=MediaFormat.GIF,
            destination=out,
        )
    )

    assert result.durations_ms == (30.0, 50.0, 100.0)
    again = decode(out)
    assert again.frame_count == 3
    assert again.durations_ms == (30.0, 50.0, 100.0)
    assert again.loop_count == 0


def test_gif_round_trip_keeps_variable_durations(tmp_path: Path, make_gif) -> None:
    source = decode(make_gif(frames=3, duration=[50, 120, 300], loop=4))
    out = tmp_path / "out.gif"

    encode(
        EncodeRequest(
            frames=source.frames,
            durations_ms=source.durations_ms,
            loop_count=source.loop_count,
            target_format=MediaFormat.GIF,
            destination=out,
        )
    )

    again = decode(out)
    assert again.frame_count == 3
    assert again.durations_ms == (50.0, 120.0, 300.0)
    assert again.loop_count == 4
    assert [f.pixels for f in again.frames] == [f.pixels for f in source.frames]
