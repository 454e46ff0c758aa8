"""Shared helpers for building and checking ffmpeg command lines."""

from __future__ import annotations

import shutil
import subprocess
from typing import TYPE_CHECKING

from audio_recorder.config import ConfigError

if TYPE_CHECKING:
    from audio_recorder.capture import CaptureConfig

FFMPEG_BINARY = "ffmpeg"


def input_spec(input_format: str, device: str) -> str:
    """Return the ``-i`` argument for ``device`` under ``input_format``.

    avfoundation addresses devices as ``<video>:<audio>``; we only want the
    audio side so the index goes after the colon. Other demuxers (alsa,
    pulse, dshow) take the device name verbatim.
    """

    device = str(device)
    if input_format == "avfoundation" and not device.startswith(":"):
        return f":{device}"
    return device


def silencedetect_filter(noise_level_db: float, silence_duration: float) -> str:
    return f"silencedetect=noise={noise_level_db:g}dB:d={silence_duration:g}"


def build_ffmpeg_command(
    config: "CaptureConfig",
    output_path: str,
    *,
    binary: str = FFMPEG_BINARY,
) -> list[str]:
    """Record ``config.device`` to ``output_path`` while running silencedetect.

    silencedetect writes its markers to stderr at the default log level, so
    the log level is left alone.
    """

    return [
        binary,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-f",
        config.input_format,
        "-i",
        input_spec(config.input_format, config.device),
        "-af",
        silencedetect_filter(config.noise_level_db, config.silence_duration),
        "-ac",
        str(config.channels),
        "-acodec",
        config.codec,
        "-b:a",
        config.bitrate,
        "-ar",
        str(config.sample_rate),
        output_path,
    ]


def check_ffmpeg(binary: str = FFMPEG_BINARY) -> str:
    """Return the resolved ffmpeg path or raise ConfigError."""
    resolved = shutil.which(binary)
    if not resolved:
        raise ConfigError(f"FFmpeg is not installed or not in PATH: {binary}")
    try:
        proc = subprocess.run(
            [resolved, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ConfigError(f"FFmpeg could not be executed: {exc}") from exc
    if proc.returncode != 0:
        raise ConfigError(f"FFmpeg -version exited with status {proc.returncode}")
    return resolved
