from __future__ import annotations

import json
from fractions import Fraction
from pathlib import Path

from unlustig.domain.media import MediaFormat

# Encoder settings per video container. Every entry ends in yuv420p so the
# output plays in browsers and stock players.
VIDEO_CODEC_ARGS: dict[MediaFormat, list[str]] = {
    MediaFormat.MP4: [
        "-c:v", "libx264", "-preset", "medium", "-crf", "20",
        "-pix_fmt", "yuv420p", "-movflags", "+faststart",
    ],
    MediaFormat.MOV: ["-c:v", "libx264", "-preset", "medium", "-crf", "20", "-pix_fmt", "yuv420p"],
    MediaFormat.MKV: ["-c:v", "libx264", "-preset", "medium", "-crf", "20", "-pix_fmt", "yuv420p"],
    MediaFormat.AVI: ["-c:v", "mpeg4", "-q:v", "3", "-pix_fmt", "yuv420p"],
    MediaFormat.WEBM: ["-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0", "-pix_fmt", "yuv420p"],
}

MUXERS: dict[MediaFormat, str] = {
    MediaFormat.MP4: "mp4",
    MediaFormat.MOV: "mov",
    MediaFormat.MKV: "matroska",
    MediaFormat.AVI: "avi",
    MediaFormat.WEBM: "webm",
}


def format_rate(rate: Fraction) -> str:
    if rate.denominator == 1:
        return str(rate.numerator)
    return f"{rate.numerator}/{rate.denominator}"


def parse_rate(rate: str | None) -> Fraction | None:
    if not rate or rate == "0/0":
        return None
    try:
        value = Fraction(rate)
    except (ValueError, ZeroDivisionError):
        return None
    if value <= 0:
        return None
    return value


def build_probe_cmd(path: str | Path, *, ffprobe: str = "ffprobe") -> list[str]:
    return [
        ffprobe,
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_format",
        "-show_streams",
        "-of",
        "json",
        str(path),
    ]


def parse_probe(stdout: bytes | str) -> dict | None:
    """Extract the first video stream's geometry and rate from ffprobe JSON."""
    try:
        data = json.loads(stdout)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None

    for stream in data.get("streams", []):
        if stream.get("codec_type") != "video":
            continue
        width = stream.get("width")
        height = stream.get("height")
        if not width or not height:
            return None
        fps = parse_rate(stream.get("avg_frame_rate")) or parse_rate(stream.get("r_frame_rate"))
        duration = None
        raw_duration = stream.get("duration") or data.get("format", {}).get("duration")
        try:
            duration = float(raw_duration) if raw_duration else None
        except (TypeError, ValueError):
            duration = None
        return {
            "width": int(width),
            "height": int(height),
            "fps": fps,
            "duration_seconds": duration,
            "video_codec": stream.get("codec_name"),
            "pixel_format": stream.get("pix_fmt"),
        }
    return None


def build_decode_cmd(path: str | Path, *, rate: Fraction, ffmpeg: str = "ffmpeg") -> list[str]:
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(path),
        "-map",
        "0:v:0",
        "-an",
        "-vf",
        f"fps={format_rate(rate)}",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgba",
        "pipe:1",
    ]


def build_encode_cmd(
    out: str | Path,
    *,
    width: int,
    height: int,
    rate: Fraction,
    media_format: MediaFormat,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    if media_format not in VIDEO_CODEC_ARGS:
        raise ValueError(f"{media_format.value} is not a video container")
    return [
        ffmpeg,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgba",
        "-s",
        f"{width}x{height}",
        "-r",
        format_rate(rate),
        "-i",
        "pipe:0",
        "-an",
        "-vf",
        "pad=ceil(iw/2)*2:ceil(ih/2)*2",
        *VIDEO_CODEC_ARGS[media_format],
        "-f",
        MUXERS[media_format],
        str(out),
    ]
