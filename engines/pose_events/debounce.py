"""
Debounce Manager — per-rule temporal state machine.

    IDLE ──candidate──▶ CONFIRMED ──next frame──▶ COOLDOWN ──cooldown_sec──▶ IDLE

The first qualifying candidate is confirmed immediately; candidates that
arrive while the rule is cooling down are dropped (not emitted, not queued).
A sustained condition therefore yields one event per cooldown period.
"""

import logging
from enum import Enum
from typing import Optional, Sequence

from engines.pose_events.detectors import PoseRule
from engines.pose_events.events import DetectionEvent
from engines.pose_events.history import FrameHistory, HistorySample
from engines.pose_events.keypoints import Keypoint, PoseMetrics, keypoint_map
from engines.pose_events.rules import DetectionConfig

logger = logging.getLogger(__name__)


class DebounceState(Enum):
    IDLE = 'idle'
    CONFIRMED = 'confirmed'
    COOLDOWN = 'cooldown'


class DebounceManager:
    """Owns one rule's history and cooldown; turns candidates into events."""

    def __init__(self, rule: PoseRule, config: DetectionConfig):
        self.rule = rule
        self.config = config
        self.history = FrameHistory(
            window_sec=config.history_window_sec,
            max_samples=config.max_history_samples,
        )
        self.state = DebounceState.IDLE
        self.last_confirmed: Optional[float] = None
        self.confirmed_count = 0
        self.suppressed_count = 0

    @property
    def type(self) -> str:
        return self.rule.type

    def _advance(self, timestamp: float) -> None:
        """Move CONFIRMED → COOLDOWN → IDLE as time passes."""
        if self.state is DebounceState.IDLE or self.last_confirmed is None:
            return
        if timestamp - self.last_confirmed >= self.config.cooldown_sec:
            self.state = DebounceState.IDLE
        else:
            self.state = DebounceState.COOLDOWN

    def process(self, pose: Sequence[Keypoint], metrics: PoseMetrics,
                timestamp: float) -> Optional[DetectionEvent]:
        """
        Evaluate the rule on one frame and debounce the result.

        Frames without the evidence the rule needs leave history and
        cooldown untouched.
        """
        if not self.rule.has_evidence(pose, metrics):
            return None

        self._advance(timestamp)
        candidate = self.rule.evaluate(pose, metrics, timestamp, self.history)
        self.history.append(HistorySample(
            timestamp=timestamp,
            metrics=metrics,
            joints=keypoint_map(pose, self.config.confidence_threshold),
        ))

        if candidate is None:
            return None

        if self.state is not DebounceState.IDLE:
            self.suppressed_count += 1
            logger.debug(
                f"{self.type}: candidate at t={timestamp:.2f}s suppressed "
                f"(cooldown since t={self.last_confirmed:.2f}s)"
            )
            return None

        self.state = DebounceState.CONFIRMED
        self.last_confirmed = timestamp
        self.confirmed_count += 1
        return DetectionEvent.from_candidate(candidate)

    def reset(self) -> None:
        self.history.clear()
        self.state = DebounceState.IDLE
        self.last_confirmed = None
        self.confirmed_count = 0
        self.suppressed_count = 0

    def get_stats(self) -> dict:
        return {
            'state': self.state.value,
            'last_confirmed': self.last_confirmed,
            'history_samples': len(self.history),
            'confirmed': self.confirmed_count,
            'suppressed': self.suppressed_count,
        }
