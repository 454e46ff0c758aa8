"""Build and publish records describing finished clips."""

from __future__ import annotations

import base64
import json
import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import IO, Any

from audio_recorder.artifact import CaptureResult

_LOG = logging.getLogger("clip_records")


def _write_payload_atomic(path: Path, payload: dict[str, object]) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, separators=(",", ":"))
        handle.write("\n")
    os.replace(tmp_path, path)


def build_clip_record(
    result: CaptureResult,
    *,
    device: str,
    codec: str,
    include_content: bool = False,
    now: float | None = None,
) -> dict[str, Any]:
    """Describe ``result`` for downstream consumers.

    The size is taken from the filesystem at emit time. ``content`` carries
    the clip bytes base64-encoded so the record stays valid JSON.
    """

    if not result.has_artifact:
        raise ValueError("cannot build a clip record without an artifact")
    path = Path(result.path)  # type: ignore[arg-type]
    record: dict[str, Any] = {
        "path": str(path),
        "filename": path.name,
        "size": path.stat().st_size,
        "timestamp": int(time.time() if now is None else now),
        "device": device,
        "duration": round(result.duration, 2),
        "format": codec,
        "stop_reason": result.stop_reason.value if result.stop_reason else None,
    }
    if include_content:
        record["content"] = base64.b64encode(path.read_bytes()).decode("ascii")
    return record


class ClipEmitter:
    """Append tagged clip records as JSON lines to a file or stdout."""

    def __init__(
        self,
        tag: str,
        *,
        events_path: str | os.PathLike[str] | None = None,
        write_sidecar: bool = False,
        stream: IO[str] | None = None,
    ) -> None:
        self.tag = tag
        self.events_path = Path(events_path) if events_path else None
        self.write_sidecar = write_sidecar
        self._stream = stream
        self._lock = threading.Lock()

    def emit(self, record: dict[str, Any], *, now: float | None = None) -> dict[str, Any]:
        envelope = {
            "tag": self.tag,
            "time": time.time() if now is None else now,
            "record": record,
        }
        line = json.dumps(envelope, ensure_ascii=False, separators=(",", ":"))
        with self._lock:
            if self.events_path is not None:
                self.events_path.parent.mkdir(parents=True, exist_ok=True)
                with self.events_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            else:
                stream = self._stream or sys.stdout
                stream.write(line + "\n")
                stream.flush()
        if self.write_sidecar:
            sidecar = {key: value for key, value in record.items() if key != "content"}
            _write_payload_atomic(Path(record["path"] + ".json"), sidecar)
        _LOG.info("Emitting recorded audio file: %s", record["path"])
        return envelope
