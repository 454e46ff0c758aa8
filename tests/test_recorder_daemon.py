import json
import threading
import time
from pathlib import Path

import pytest

from audio_recorder import config as config_module
from audio_recorder import recorder_daemon
from audio_recorder.artifact import CaptureResult
from audio_recorder.capture import CaptureConfig, CaptureStartError
from audio_recorder.capture_policy import StopReason
from audio_recorder.clip_records import ClipEmitter
from audio_recorder.config import ConfigError
from audio_recorder.recorder_daemon import RecorderDaemon, ensure_buffer_dir


class ScriptedRecorder:
    """Replays canned outcomes; blocks on the stop event once exhausted."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self, config, stop_signal):
        self.calls += 1
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        stop_signal.wait(5.0)
        return CaptureResult.no_artifact(StopReason.EXTERNALLY_REQUESTED)


def _clip(tmp_path: Path, name: str) -> Path:
    clip = tmp_path / name
    clip.write_bytes(b"\0" * 2000)
    return clip


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_run_once_emits_only_artifacts(tmp_path: Path):
    events = tmp_path / "events.jsonl"
    clip = _clip(tmp_path, "a.aac")
    recorder = ScriptedRecorder(
        [
            CaptureResult.artifact(clip, 3.0, StopReason.SILENCE_DETECTED),
            CaptureResult.no_artifact(StopReason.STREAM_ENDED),
        ]
    )
    daemon = RecorderDaemon(
        CaptureConfig(output_dir=str(tmp_path)),
        ClipEmitter("audio.recording", events_path=events),
        recorder=recorder,
    )

    assert daemon.run_once().has_artifact
    assert not daemon.run_once().has_artifact

    lines = events.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["record"]["filename"] == "a.aac"
    assert daemon.clips_emitted == 1


def test_loop_retries_after_errors_and_stops(tmp_path: Path, caplog):
    clip = _clip(tmp_path, "b.aac")
    recorder = ScriptedRecorder(
        [
            CaptureStartError("ffmpeg vanished"),
            RuntimeError("boom"),
            CaptureResult.artifact(clip, 1.0, StopReason.MAX_DURATION_REACHED),
        ]
    )
    daemon = RecorderDaemon(
        CaptureConfig(output_dir=str(tmp_path)),
        ClipEmitter("audio.recording", events_path=tmp_path / "events.jsonl"),
        retry_delay=0.0,
        recorder=recorder,
    )

    daemon.start()
    assert _wait_for(lambda: daemon.clips_emitted == 1)
    assert daemon.shutdown(timeout=5.0)

    assert recorder.calls >= 3
    assert not daemon.running
    assert any("ffmpeg vanished" in record.getMessage() for record in caplog.records)


def test_restart_clears_previous_stop(tmp_path: Path):
    recorder = ScriptedRecorder([])
    daemon = RecorderDaemon(
        CaptureConfig(output_dir=str(tmp_path)),
        ClipEmitter("audio.recording", events_path=tmp_path / "events.jsonl"),
        recorder=recorder,
    )

    daemon.start()
    assert daemon.shutdown(timeout=5.0)
    assert daemon.stop_requested

    daemon.start()
    assert not daemon.stop_requested
    assert daemon.running
    assert daemon.shutdown(timeout=5.0)


def test_ensure_buffer_dir(tmp_path: Path):
    target = tmp_path / "nested" / "buffer"
    assert ensure_buffer_dir(target) == target
    assert target.is_dir()


def test_main_fails_on_missing_ffmpeg(monkeypatch, tmp_path: Path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"paths:\n  buffer_dir: {tmp_path / 'buffer'}\n", encoding="utf-8")

    def missing():
        raise ConfigError("FFmpeg is not installed or not in PATH: ffmpeg")

    monkeypatch.setattr(recorder_daemon, "check_ffmpeg", missing)
    monkeypatch.setenv("AUDIO_RECORDER_CONFIG", str(config_path))
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)

    assert recorder_daemon.main(["--config", str(config_path)]) == 2
    assert not (tmp_path / "buffer").exists()


def test_main_once_records_single_clip(monkeypatch, tmp_path: Path):
    buffer_dir = tmp_path / "buffer"
    events = tmp_path / "events.jsonl"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"paths:\n  buffer_dir: {buffer_dir}\nemit:\n  events_path: {events}\n",
        encoding="utf-8",
    )
    seen = []

    def fake_record(config, stop_signal):
        seen.append(config)
        clip = Path(config.output_dir) / "clip.aac"
        clip.write_bytes(b"\0" * 2000)
        return CaptureResult.artifact(clip, 2.5, StopReason.SILENCE_DETECTED)

    monkeypatch.setattr(recorder_daemon, "check_ffmpeg", lambda: "/usr/bin/ffmpeg")
    monkeypatch.setattr(recorder_daemon, "record_one_clip", fake_record)
    monkeypatch.setattr(recorder_daemon.signal, "signal", lambda *args: None)
    monkeypatch.setenv("AUDIO_RECORDER_CONFIG", str(config_path))
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)

    assert recorder_daemon.main(["--config", str(config_path), "--once"]) == 0

    assert seen[0].output_dir == str(buffer_dir)
    record = json.loads(events.read_text(encoding="utf-8"))["record"]
    assert record["duration"] == 2.5
    assert record["stop_reason"] == "silence_detected"


def test_loop_pauses_after_engine_exits_without_clip(tmp_path: Path, caplog):
    starts = []

    def recorder(config, stop_signal):
        starts.append(time.monotonic())
        return CaptureResult.no_artifact(StopReason.STREAM_ENDED)

    daemon = RecorderDaemon(
        CaptureConfig(output_dir=str(tmp_path)),
        ClipEmitter("audio.recording", events_path=tmp_path / "events.jsonl"),
        retry_delay=0.3,
        recorder=recorder,
    )

    daemon.start()
    assert _wait_for(lambda: len(starts) >= 3)
    assert daemon.shutdown(timeout=5.0)

    gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
    assert min(gaps) >= 0.25
    assert any("without a usable clip" in record.getMessage() for record in caplog.records)


def test_build_daemon_reads_string_flags(tmp_path: Path):
    cfg = {
        "paths": {"buffer_dir": str(tmp_path)},
        "emit": {"include_content": "false", "write_sidecar": "on"},
    }

    daemon = recorder_daemon.build_daemon(cfg)

    assert daemon.include_content is False
    assert daemon.emitter.write_sidecar is True
