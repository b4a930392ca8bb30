"""
Detection Manager — feeds each pose frame to every rule and collects
confirmed events.

One manager per camera/session. Pure in-memory computation: no I/O, no
threads, no locking. Call reset() at the start of every recording session.
"""

import logging
import math
from collections import Counter
from typing import List, Optional

from engines.pose_events.debounce import DebounceManager
from engines.pose_events.detectors import build_rules
from engines.pose_events.events import DetectionEvent
from engines.pose_events.keypoints import PoseInput, compute_pose_metrics, parse_keypoints
from engines.pose_events.rules import DetectionConfig

logger = logging.getLogger(__name__)


class NonMonotonicTimestampError(ValueError):
    """A live session received a timestamp earlier than the previous frame."""


class DetectionManager:
    """
    Runs fall → person_on_ground → unconscious → hands_raised on every frame.

    Design principles:
    - Frames with fewer than two observed joints are absorbed silently
    - Each rule debounces independently; simultaneous events are all returned
    - Decreasing timestamps are rejected in live mode, and trigger a reset
      (seek) in replay mode
    """

    def __init__(self, config: Optional[DetectionConfig] = None, replay: bool = False):
        self.config = config or DetectionConfig()
        self.config.validate()
        self._debouncers = [DebounceManager(rule, self.config) for rule in build_rules(self.config)]
        self.replay = replay
        self._last_timestamp: Optional[float] = None
        self._frames = 0
        self._absorbed = 0
        self._emitted: Counter = Counter()

    def detect_all(self, pose: PoseInput, timestamp: float) -> List[DetectionEvent]:
        """
        Process one frame. Returns the events confirmed on this frame, in
        rule order (usually an empty list).
        """
        timestamp = float(timestamp)
        if not math.isfinite(timestamp):
            raise ValueError(f"timestamp must be a finite number (got {timestamp})")
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            if not self.replay:
                raise NonMonotonicTimestampError(
                    f"timestamp {timestamp:.3f}s is before previous frame "
                    f"{self._last_timestamp:.3f}s"
                )
            logger.info(f"Replay seek to t={timestamp:.2f}s, resetting rule state")
            self._reset_rules()

        self._last_timestamp = timestamp
        self._frames += 1

        keypoints = parse_keypoints(pose)
        metrics = compute_pose_metrics(keypoints, self.config.confidence_threshold)
        if metrics is None:
            self._absorbed += 1
            logger.debug(f"t={timestamp:.2f}s: not enough observed joints, frame absorbed")
            return []

        events = []
        for debouncer in self._debouncers:
            event = debouncer.process(keypoints, metrics, timestamp)
            if event is not None:
                events.append(event)
                self._emitted[event.type] += 1
                logger.info(
                    f"Detection: {event.type} at t={event.timestamp:.2f}s "
                    f"(confidence: {event.confidence:.0%}) — {event.description}"
                )
        return events

    def _reset_rules(self) -> None:
        for debouncer in self._debouncers:
            debouncer.reset()
        self._last_timestamp = None

    def reset(self, replay: bool = False) -> None:
        """Clear all rule state. replay=True allows seeking backwards afterwards."""
        self._reset_rules()
        self.replay = replay
        self._frames = 0
        self._absorbed = 0
        self._emitted.clear()
        logger.info(f"Detection state reset ({'replay' if replay else 'live'} mode)")

    def get_stats(self) -> dict:
        return {
            'mode': 'replay' if self.replay else 'live',
            'frames_processed': self._frames,
            'frames_absorbed': self._absorbed,
            'events': dict(self._emitted),
            'rules': {d.type: d.get_stats() for d in self._debouncers},
        }
