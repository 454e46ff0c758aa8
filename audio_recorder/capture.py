#!/usr/bin/env python3
"""
Bounded silence-triggered capture.

record_one_clip() runs one ffmpeg recording session:

- spawns ffmpeg writing the configured codec to a fresh file in the buffer
  directory while its silencedetect filter reports on stderr
- feeds every stderr line (and an idle tick every poll_interval) through
  CapturePolicy
- sends SIGINT once the policy stops, waits for ffmpeg to flush and exit
- validates the file and returns a CaptureResult

The only exception raised is CaptureStartError when ffmpeg cannot be spawned;
everything that happens inside a session resolves to a CaptureResult.
"""

from __future__ import annotations

import itertools
import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from audio_recorder.artifact import CaptureResult, discard_artifact, validate_artifact
from audio_recorder.capture_policy import SILENCE_GATES, CapturePolicy, StopReason
from audio_recorder.config import ConfigError, as_bool
from audio_recorder.ffmpeg_io import build_ffmpeg_command
from audio_recorder.line_reader import LineStreamReader
from audio_recorder.silence_events import parse_silence_line

_LOG = logging.getLogger("capture")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
# Per-process session counter; keeps names unique when earlier clips were discarded.
_SESSION_SEQ = itertools.count(1)

CommandBuilder = Callable[["CaptureConfig", str], list[str]]


class CaptureStartError(RuntimeError):
    """Raised when the recording engine cannot be launched."""


@dataclass(frozen=True)
class CaptureConfig:
    device: str = "0"
    input_format: str = "avfoundation"
    noise_level_db: float = -30.0
    silence_duration: float = 1.0
    min_duration: float = 2.0
    max_duration: float = 900.0
    codec: str = "aac"
    bitrate: str = "192k"
    sample_rate: int = 44100
    channels: int = 1
    output_dir: str = "/tmp/audio-recorder"
    poll_interval: float = 0.5
    silence_gate: str = "start"
    discard_invalid: bool = True
    kill_after: float | None = None

    def __post_init__(self) -> None:
        if self.min_duration < 0 or self.max_duration < 0:
            raise ConfigError("min_duration and max_duration must be non-negative")
        if self.min_duration > self.max_duration:
            raise ConfigError(
                f"min_duration ({self.min_duration}) exceeds max_duration ({self.max_duration})"
            )
        if self.silence_duration <= 0:
            raise ConfigError("silence_duration must be positive")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        if self.channels < 1:
            raise ConfigError("channels must be at least 1")
        if self.sample_rate <= 0:
            raise ConfigError("sample_rate must be positive")
        if self.silence_gate not in SILENCE_GATES:
            raise ConfigError(f"silence gate must be one of {SILENCE_GATES}")
        if self.kill_after is not None and self.kill_after <= 0:
            raise ConfigError("kill_after must be positive when set")

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any]) -> "CaptureConfig":
        audio = cfg.get("audio", {}) or {}
        silence = cfg.get("silence", {}) or {}
        capture = cfg.get("capture", {}) or {}
        paths = cfg.get("paths", {}) or {}
        kill_after = capture.get("kill_after_sec")
        try:
            values: dict[str, Any] = {
                "device": str(audio.get("device", cls.device)),
                "input_format": str(audio.get("input_format", cls.input_format)),
                "noise_level_db": float(silence.get("noise_level_db", cls.noise_level_db)),
                "silence_duration": float(silence.get("duration_sec", cls.silence_duration)),
                "min_duration": float(capture.get("min_duration_sec", cls.min_duration)),
                "max_duration": float(capture.get("max_duration_sec", cls.max_duration)),
                "codec": str(audio.get("codec", cls.codec)),
                "bitrate": str(audio.get("bitrate", cls.bitrate)),
                "sample_rate": int(audio.get("sample_rate", cls.sample_rate)),
                "channels": int(audio.get("channels", cls.channels)),
                "output_dir": str(paths.get("buffer_dir", cls.output_dir)),
                "poll_interval": float(capture.get("poll_interval_sec", cls.poll_interval)),
                "silence_gate": str(silence.get("gate", cls.silence_gate)).strip().lower(),
                "discard_invalid": as_bool(capture.get("discard_invalid", cls.discard_invalid)),
                "kill_after": float(kill_after) if kill_after is not None else None,
            }
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid capture configuration: {exc}") from exc
        return cls(**values)

    def new_policy(self) -> CapturePolicy:
        return CapturePolicy(
            min_duration=self.min_duration,
            max_duration=self.max_duration,
            silence_threshold=self.silence_duration,
            gate=self.silence_gate,
        )


@dataclass
class CaptureSession:
    """State for one engine invocation; never shared between sessions."""

    policy: CapturePolicy
    stop_signal: threading.Event
    output_path: str
    clock: Callable[[], float] = time.monotonic
    started_at: float = field(init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    def elapsed(self) -> float:
        return max(0.0, self.clock() - self.started_at)

    def step(self, line: str | None) -> StopReason | None:
        event = parse_silence_line(line) if line else None
        return self.policy.observe(
            self.elapsed(),
            event,
            stop_requested=self.stop_signal.is_set(),
        )

    def finish(self) -> StopReason:
        return self.policy.stream_ended(self.elapsed())

    @property
    def stop_reason(self) -> StopReason | None:
        return self.policy.stop_reason

    @property
    def duration(self) -> float:
        if self.policy.stopped_at is not None:
            return self.policy.stopped_at
        return self.elapsed()


def build_output_path(config: CaptureConfig, *, now: float | None = None) -> str:
    """<buffer_dir>/<YYYYmmdd-HHMMSS>_<epoch>_<seq>_<device>.<codec>, never reused."""
    ts = time.time() if now is None else now
    stamp = time.strftime("%Y%m%d-%H%M%S", time.localtime(ts))
    device = _UNSAFE_NAME_CHARS.sub("_", str(config.device)).strip("_") or "device"
    base = f"{stamp}_{int(ts)}_{next(_SESSION_SEQ):04d}_{device}"
    directory = Path(config.output_dir)
    candidate = directory / f"{base}.{config.codec}"
    counter = 1
    while candidate.exists():
        candidate = directory / f"{base}-{counter}.{config.codec}"
        counter += 1
    return str(candidate)


def _interrupt(proc: subprocess.Popen) -> None:
    try:
        proc.send_signal(signal.SIGINT)
    except OSError as exc:
        _LOG.debug("SIGINT to ffmpeg pid=%s failed: %r", proc.pid, exc)


def _wait_for_exit(proc: subprocess.Popen, kill_after: float | None) -> int:
    if kill_after is None:
        return proc.wait()
    try:
        return proc.wait(timeout=kill_after)
    except subprocess.TimeoutExpired:
        _LOG.warning(
            "ffmpeg did not exit %.1fs after SIGINT; sending SIGKILL", kill_after
        )
        try:
            proc.kill()
        except OSError as exc:
            _LOG.debug("ffmpeg kill() failed: %r", exc)
        return proc.wait()


def _monitor(session: CaptureSession, reader: LineStreamReader, poll_interval: float) -> StopReason:
    for line in reader.lines(poll_interval):
        reason = session.step(line)
        if reason is not None:
            return reason
    return session.finish()


def record_one_clip(
    config: CaptureConfig,
    stop_signal: threading.Event,
    *,
    build_command: CommandBuilder = build_ffmpeg_command,
    clock: Callable[[], float] = time.monotonic,
) -> CaptureResult:
    output_path = build_output_path(config)
    cmd = build_command(config, output_path)

    _LOG.info("Starting audio recording with silence detection")
    _LOG.debug(
        "Recording parameters: device=%s, silence_duration=%ss, noise_level=%sdB,"
        " min_duration=%ss, max_duration=%ss",
        config.device,
        config.silence_duration,
        config.noise_level_db,
        config.min_duration,
        config.max_duration,
    )

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except OSError as exc:
        raise CaptureStartError(f"failed to launch {cmd[0]}: {exc}") from exc

    assert proc.stderr is not None
    reader = LineStreamReader(proc.stderr).start()
    finished = False
    try:
        session = CaptureSession(
            policy=config.new_policy(),
            stop_signal=stop_signal,
            output_path=output_path,
            clock=clock,
        )
        reason = _monitor(session, reader, config.poll_interval)
        if reason is not StopReason.STREAM_ENDED:
            _interrupt(proc)
        returncode = _wait_for_exit(proc, config.kill_after)
        finished = True
    finally:
        if not finished and proc.poll() is None:
            _LOG.warning("capture aborted; killing ffmpeg pid=%s", proc.pid)
            proc.kill()
            proc.wait()
        reader.close()

    _LOG.debug(
        "ffmpeg exited rc=%s after %d stderr line(s); stop reason=%s",
        returncode,
        reader.lines_read,
        reason.value,
    )

    result = validate_artifact(output_path, duration=session.duration, stop_reason=reason)
    if result.has_artifact:
        _LOG.info("Recording completed: %s (%.2fs)", output_path, result.duration)
    else:
        _LOG.warning("Recording file is missing or too small: %s", output_path)
        if config.discard_invalid and os.path.exists(output_path):
            discard_artifact(output_path)
    return result
