"""
Detection events — the only thing the engine hands back to its caller.
"""

import bisect
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping

from engines.pose_events.rules import DETECTION_METADATA, VLM_DETECTION


def _round_floats(value):
    if isinstance(value, float):
        return round(value, 3)
    if isinstance(value, (list, tuple)):
        return [_round_floats(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _round_floats(v) for k, v in value.items()}
    return value


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class DetectionCandidate:
    """Unconfirmed per-frame proposal from a rule, before debounce."""
    type: str
    confidence: float
    timestamp: float
    description: str
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DetectionEvent:
    """A confirmed detection, identical in shape for pose and external sources."""
    type: str
    timestamp: float                  # seconds since session start
    confidence: float                 # [0, 1]
    description: str
    payload: Mapping = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f'confidence must be within [0, 1] (got {self.confidence})')
        if self.timestamp < 0:
            raise ValueError(f'timestamp must not be negative (got {self.timestamp})')
        object.__setattr__(self, 'payload', MappingProxyType(dict(self.payload or {})))

    @property
    def severity(self) -> str:
        return DETECTION_METADATA.get(self.type, {}).get('severity', 'medium')

    @classmethod
    def from_candidate(cls, candidate: DetectionCandidate) -> 'DetectionEvent':
        return cls(
            type=candidate.type,
            timestamp=candidate.timestamp,
            confidence=clamp(candidate.confidence),
            description=candidate.description,
            payload=candidate.payload,
        )

    def to_dict(self) -> dict:
        data = {
            'type': self.type,
            'timestamp': round(self.timestamp, 3),
            'confidence': round(self.confidence, 3),
            'description': self.description,
        }
        for key, value in self.payload.items():
            data.setdefault(key, _round_floats(value))
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'DetectionEvent':
        base = ('type', 'timestamp', 'confidence', 'description')
        payload = {k: v for k, v in data.items() if k not in base}
        return cls(
            type=data['type'],
            timestamp=float(data['timestamp']),
            confidence=float(data['confidence']),
            description=data.get('description') or f"{data['type']} detection",
            payload=payload,
        )


def make_external_event(timestamp: float, confidence: float, description: str,
                        category: str, explanation: str,
                        event_type: str = VLM_DETECTION) -> DetectionEvent:
    """Wrap an external classifier verdict as a DetectionEvent."""
    return DetectionEvent(
        type=event_type,
        timestamp=timestamp,
        confidence=confidence,
        description=description,
        payload={'category': category, 'explanation': explanation},
    )


def insert_event(events: List[DetectionEvent], event: DetectionEvent) -> int:
    """
    Insert an event keeping the list ordered by timestamp.
    Ties go after existing events, so detection order is preserved.
    """
    idx = bisect.bisect_right([e.timestamp for e in events], event.timestamp)
    events.insert(idx, event)
    return idx


def merge_events(*streams: Iterable[DetectionEvent]) -> List[DetectionEvent]:
    """Merge independently timestamped event streams (stable by timestamp)."""
    merged: List[DetectionEvent] = []
    for stream in streams:
        merged.extend(stream)
    return sorted(merged, key=lambda e: e.timestamp)
