"""Post-capture checks on the file ffmpeg left behind."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from audio_recorder.capture_policy import StopReason

_LOG = logging.getLogger("capture")

# Anything at or below this is a header-only or aborted file.
MIN_ARTIFACT_BYTES = 1000


@dataclass(frozen=True)
class CaptureResult:
    path: str | None
    duration: float
    stop_reason: StopReason | None = None

    @classmethod
    def artifact(
        cls,
        path: str | os.PathLike[str],
        duration: float,
        stop_reason: StopReason | None = None,
    ) -> "CaptureResult":
        return cls(os.fspath(path), float(duration), stop_reason)

    @classmethod
    def no_artifact(cls, stop_reason: StopReason | None = None) -> "CaptureResult":
        return cls(None, 0.0, stop_reason)

    @property
    def has_artifact(self) -> bool:
        return self.path is not None


def artifact_size(path: str | os.PathLike[str]) -> int | None:
    try:
        return os.stat(path).st_size
    except FileNotFoundError:
        return None
    except OSError as exc:
        _LOG.debug("stat failed for %s: %r", path, exc)
        return None


def validate_artifact(
    path: str | os.PathLike[str],
    *,
    duration: float = 0.0,
    stop_reason: StopReason | None = None,
) -> CaptureResult:
    """Return an artifact result only for a file larger than MIN_ARTIFACT_BYTES.

    Only presence and size are checked; codec correctness is ffmpeg's job.
    """

    size = artifact_size(path)
    if size is None or size <= MIN_ARTIFACT_BYTES:
        return CaptureResult.no_artifact(stop_reason)
    return CaptureResult.artifact(path, duration, stop_reason)


def discard_artifact(path: str | os.PathLike[str]) -> bool:
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        _LOG.warning("failed to remove %s: %r", path, exc)
        return False
    return True
