"""
Frame History — bounded, time-windowed sample buffer owned by one rule.
Evicts the oldest samples on insert, both by age and by capacity.
"""

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from engines.pose_events.keypoints import PoseMetrics


@dataclass(frozen=True)
class HistorySample:
    """One evidence frame: (timestamp, metrics, observed joint positions)."""
    timestamp: float
    metrics: PoseMetrics
    joints: Dict[str, Tuple[float, float]]

    @property
    def posture_ratio(self) -> Optional[float]:
        return self.metrics.posture_ratio


class FrameHistory:
    """
    Ring buffer of HistorySample ordered by timestamp.

    Samples older than `window_sec` relative to the newest one are dropped,
    and the deque's maxlen caps memory regardless of frame rate.
    """

    def __init__(self, window_sec: float, max_samples: int = 600):
        self.window_sec = window_sec
        self.max_samples = max_samples
        self._samples: deque = deque(maxlen=max_samples)

    def append(self, sample: HistorySample) -> None:
        self._samples.append(sample)
        self._evict(sample.timestamp)

    def _evict(self, now: float) -> None:
        while self._samples and (now - self._samples[0].timestamp) > self.window_sec:
            self._samples.popleft()

    def clear(self) -> None:
        self._samples.clear()

    def since(self, start: float) -> List[HistorySample]:
        """Samples with timestamp >= start, oldest first."""
        return [s for s in self._samples if s.timestamp >= start]

    def trailing(self) -> Iterator[HistorySample]:
        """Newest first."""
        return reversed(self._samples)

    @property
    def oldest(self) -> Optional[HistorySample]:
        return self._samples[0] if self._samples else None

    @property
    def newest(self) -> Optional[HistorySample]:
        return self._samples[-1] if self._samples else None

    @property
    def duration(self) -> float:
        """Time span covered by the retained samples (seconds)."""
        if len(self._samples) < 2:
            return 0.0
        return self._samples[-1].timestamp - self._samples[0].timestamp

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[HistorySample]:
        return iter(self._samples)
