"""Decide when a silence-triggered capture should stop, and why."""

from __future__ import annotations

import enum
import logging

from audio_recorder.silence_events import SilenceEnd, SilenceEvent, SilenceStart

_LOG = logging.getLogger("capture_policy")

SILENCE_GATES = ("start", "end")


class StopReason(str, enum.Enum):
    SILENCE_DETECTED = "silence_detected"
    MAX_DURATION_REACHED = "max_duration_reached"
    EXTERNALLY_REQUESTED = "externally_requested"
    STREAM_ENDED = "stream_ended"


class PolicyState(enum.Enum):
    BEFORE_MINIMUM = "before_minimum"
    ELIGIBLE = "eligible"
    STOPPED = "stopped"


class CapturePolicy:
    """
    Line-driven stop policy for one capture session.

    Every call to observe() runs the checks in a fixed priority order:
      1. external stop request
      2. maximum duration ceiling
      3. minimum duration reached (BEFORE_MINIMUM -> ELIGIBLE)
      4. silence start bookkeeping
      5. silence end evaluation
    Once STOPPED, the first reason sticks and further input is ignored.

    ``gate`` selects what makes a silence eligible. With "start" the silence
    must also have begun (engine timestamp) at or after the minimum duration;
    with "end" it is enough that the minimum has elapsed when the end marker
    is processed.
    """

    def __init__(
        self,
        *,
        min_duration: float,
        max_duration: float,
        silence_threshold: float,
        gate: str = "start",
    ) -> None:
        if gate not in SILENCE_GATES:
            raise ValueError(f"unknown silence gate {gate!r}")
        self.min_duration = float(min_duration)
        self.max_duration = float(max_duration)
        self.silence_threshold = float(silence_threshold)
        self.gate = gate
        self.state = PolicyState.BEFORE_MINIMUM
        self.pending_silence_start: float | None = None
        self.stop_reason: StopReason | None = None
        self.stopped_at: float | None = None

    @property
    def stopped(self) -> bool:
        return self.state is PolicyState.STOPPED

    @property
    def min_duration_reached(self) -> bool:
        return self.state is not PolicyState.BEFORE_MINIMUM

    def observe(
        self,
        elapsed: float,
        event: SilenceEvent | None = None,
        *,
        stop_requested: bool = False,
    ) -> StopReason | None:
        """Feed one input; return the stop reason once the session must end."""
        if self.stopped:
            return self.stop_reason

        if stop_requested:
            _LOG.info("Shutdown requested. Stopping recording.")
            return self._stop(StopReason.EXTERNALLY_REQUESTED, elapsed)

        if elapsed >= self.max_duration:
            _LOG.info(
                "Maximum recording duration (%ss) reached. Stopping recording.",
                self.max_duration,
            )
            return self._stop(StopReason.MAX_DURATION_REACHED, elapsed)

        if self.state is PolicyState.BEFORE_MINIMUM and elapsed >= self.min_duration:
            self.state = PolicyState.ELIGIBLE
            _LOG.debug("Minimum recording duration (%ss) reached", self.min_duration)

        if isinstance(event, SilenceStart):
            self.pending_silence_start = event.at
            _LOG.debug("Silence detected at: %ss", event.at)
        elif isinstance(event, SilenceEnd):
            return self._on_silence_end(event, elapsed)
        return None

    def stream_ended(self, elapsed: float) -> StopReason:
        if self.stopped:
            assert self.stop_reason is not None
            return self.stop_reason
        _LOG.info("Engine output ended after %.2fs", elapsed)
        return self._stop(StopReason.STREAM_ENDED, elapsed)

    def _on_silence_end(self, event: SilenceEnd, elapsed: float) -> StopReason | None:
        started = self.pending_silence_start
        if started is None:
            return None
        self.pending_silence_start = None

        _LOG.debug("Silence ended at: %ss (duration: %ss)", event.at, event.duration)
        if not self._eligible(started):
            return None
        if event.duration >= self.silence_threshold:
            _LOG.info("Valid silence period detected. Stopping recording.")
            return self._stop(StopReason.SILENCE_DETECTED, elapsed)
        return None

    def _eligible(self, started: float) -> bool:
        if self.state is not PolicyState.ELIGIBLE:
            return False
        if self.gate == "start":
            return started >= self.min_duration
        return True

    def _stop(self, reason: StopReason, elapsed: float) -> StopReason:
        self.state = PolicyState.STOPPED
        self.stop_reason = reason
        self.stopped_at = elapsed
        return reason
