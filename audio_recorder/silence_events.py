"""Parse ffmpeg ``silencedetect`` markers out of stderr lines."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_NUMBER = r"(-?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?)"
_START_RE = re.compile(r"silence_start:\s*" + _NUMBER)
_END_RE = re.compile(r"silence_end:\s*" + _NUMBER)
_DURATION_RE = re.compile(r"silence_duration:\s*" + _NUMBER)


@dataclass(frozen=True)
class SilenceStart:
    at: float


@dataclass(frozen=True)
class SilenceEnd:
    at: float
    duration: float


SilenceEvent = Union[SilenceStart, SilenceEnd]


def parse_silence_line(line: str) -> SilenceEvent | None:
    """Return the silence marker carried by ``line``, if any.

    Timestamps are ffmpeg stream seconds and are passed through unrounded.
    Lines with a marker token but no usable number yield ``None`` so that
    garbled engine output never interrupts a capture.
    """

    if "silence_start" in line:
        match = _START_RE.search(line)
        if match is None:
            return None
        return SilenceStart(float(match.group(1)))

    if "silence_end" in line:
        end_match = _END_RE.search(line)
        duration_match = _DURATION_RE.search(line)
        if end_match is None or duration_match is None:
            return None
        return SilenceEnd(float(end_match.group(1)), float(duration_match.group(1)))

    return None
