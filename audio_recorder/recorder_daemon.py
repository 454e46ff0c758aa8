#!/usr/bin/env python3
"""
Recorder daemon: record clips back to back and emit a record for each one.

- One dedicated thread runs record_one_clip() in a loop
- SIGINT/SIGTERM set the shared stop event; the running session interrupts
  ffmpeg and returns, then the loop exits
- Errors in a session are logged and retried after a short pause
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Optional

from audio_recorder.artifact import CaptureResult
from audio_recorder.capture import CaptureConfig, CaptureStartError, record_one_clip
from audio_recorder.capture_policy import StopReason
from audio_recorder.clip_records import ClipEmitter, build_clip_record
from audio_recorder.config import ConfigError, as_bool, get_cfg, reload_cfg
from audio_recorder.ffmpeg_io import check_ffmpeg

Recorder = Callable[[CaptureConfig, threading.Event], CaptureResult]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class RecorderDaemon:
    def __init__(
        self,
        capture_config: CaptureConfig,
        emitter: ClipEmitter,
        *,
        retry_delay: float = 1.0,
        include_content: bool = False,
        recorder: Recorder = record_one_clip,
    ) -> None:
        self.config = capture_config
        self.emitter = emitter
        self.retry_delay = max(0.0, float(retry_delay))
        self.include_content = include_content
        self._recorder = recorder
        self._stop = threading.Event()
        self._t: Optional[threading.Thread] = None
        self._log = logging.getLogger("recorder_daemon")
        self.clips_emitted = 0

    @property
    def running(self) -> bool:
        return self._t is not None and self._t.is_alive()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        if self.running:
            return
        # shutdown() leaves the event set; clear it so the new loop runs.
        self._stop.clear()
        self._t = threading.Thread(
            target=self._run, name="audio_recording_thread", daemon=True
        )
        self._t.start()
        self._log.info("Recording thread started. Device: %s", self.config.device)

    def request_stop(self) -> None:
        self._stop.set()

    def shutdown(self, timeout: float | None = None) -> bool:
        """Stop the loop and wait for the current session; True if it exited."""
        self.request_stop()
        thread = self._t
        if thread is None:
            return True
        thread.join(timeout)
        if thread.is_alive():
            self._log.warning("recording thread still running after %.1fs", timeout or 0.0)
            return False
        self._t = None
        self._log.info("Recorder stopped")
        return True

    def wait(self, poll: float = 0.5) -> None:
        # Short joins keep the main thread responsive to signals.
        while self.running:
            self._t.join(poll)  # type: ignore[union-attr]

    def run_once(self) -> CaptureResult:
        result = self._recorder(self.config, self._stop)
        if result.has_artifact and os.path.exists(result.path):  # type: ignore[arg-type]
            record = build_clip_record(
                result,
                device=self.config.device,
                codec=self.config.codec,
                include_content=self.include_content,
            )
            self.emitter.emit(record)
            self.clips_emitted += 1
        return result

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                result = self.run_once()
                if not result.has_artifact and result.stop_reason is StopReason.STREAM_ENDED:
                    # ffmpeg quit on its own (bad device, busy input); don't respawn hot.
                    self._log.warning(
                        "ffmpeg exited without a usable clip; retrying in %.1fs",
                        self.retry_delay,
                    )
                    self._stop.wait(self.retry_delay)
            except CaptureStartError as exc:
                self._log.error("Unable to start recording: %s", exc)
                self._stop.wait(self.retry_delay)
            except Exception:
                self._log.exception("Error during recording")
                self._stop.wait(self.retry_delay)


def ensure_buffer_dir(path: str | os.PathLike[str]) -> Path:
    directory = Path(path)
    if not directory.is_dir():
        directory.mkdir(parents=True, exist_ok=True)
        logging.getLogger("recorder_daemon").info(
            "Created temporary buffer directory: %s", directory
        )
    return directory


def build_daemon(cfg: dict) -> RecorderDaemon:
    capture_config = CaptureConfig.from_cfg(cfg)
    emit_cfg = cfg.get("emit", {}) or {}
    emitter = ClipEmitter(
        str(emit_cfg.get("tag") or "audio.recording"),
        events_path=emit_cfg.get("events_path") or None,
        write_sidecar=as_bool(emit_cfg.get("write_sidecar", False)),
    )
    return RecorderDaemon(
        capture_config,
        emitter,
        recorder=record_one_clip,
        retry_delay=float(cfg.get("capture", {}).get("retry_delay_sec", 1.0)),
        include_content=as_bool(emit_cfg.get("include_content", False)),
    )


def _resolve_log_level(cfg: dict, override: str | None) -> int:
    if override:
        return getattr(logging, override.upper(), logging.INFO)
    logging_cfg = cfg.get("logging", {}) or {}
    if logging_cfg.get("dev_mode"):
        return logging.DEBUG
    return getattr(logging, str(logging_cfg.get("level", "INFO")).upper(), logging.INFO)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Silence-triggered audio recorder.")
    parser.add_argument("--config", type=Path, help="Path to config.yaml (overrides search).")
    parser.add_argument("--log-level", help="Python logging level (default: from config).")
    parser.add_argument("--once", action="store_true", help="Record a single clip and exit.")
    args = parser.parse_args(argv)

    if args.config is not None:
        os.environ["AUDIO_RECORDER_CONFIG"] = str(args.config)
        cfg = reload_cfg()
    else:
        cfg = get_cfg()

    logging.basicConfig(level=_resolve_log_level(cfg, args.log_level), format=LOG_FORMAT)
    log = logging.getLogger("recorder_daemon")

    try:
        daemon = build_daemon(cfg)
        check_ffmpeg()
        ensure_buffer_dir(daemon.config.output_dir)
    except ConfigError as exc:
        log.error("Configuration error: %s", exc)
        return 2

    def handle_signal(signum, frame):  # noqa
        log.info("received signal %s, shutting down...", signum)
        daemon.request_stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if args.once:
        try:
            result = daemon.run_once()
        except CaptureStartError as exc:
            log.error("Unable to start recording: %s", exc)
            return 1
        return 0 if result.has_artifact else 1

    daemon.start()
    daemon.wait()
    daemon.shutdown()
    log.info("clean shutdown complete")
    return 0


if __name__ == "__main__":
    try:
        sys.stdout.reconfigure(line_buffering=True)
    except AttributeError:
        pass
    raise SystemExit(main())
