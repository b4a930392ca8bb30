"""
Detection Rules — configurable thresholds and metadata for pose event detection.
All tunable parameters live here for easy adjustment.

IMPORTANT: Defaults assume a single fixed camera sampled at ~10 evaluations/s
with MoveNet/COCO-17 keypoints in frame-pixel space. Adjust if your setup
differs significantly.
"""

import math
from dataclasses import dataclass, fields
from typing import Dict, Tuple


# Detection type names
FALL = 'fall'
PERSON_ON_GROUND = 'person_on_ground'
UNCONSCIOUS = 'unconscious'
HANDS_RAISED = 'hands_raised'
VLM_DETECTION = 'vlm_detection'

# Evaluation order inside one frame, also the output order of simultaneous events
DETECTION_ORDER: Tuple[str, ...] = (FALL, PERSON_ON_GROUND, UNCONSCIOUS, HANDS_RAISED)

# Detection metadata: severity and origin
DETECTION_METADATA: Dict[str, dict] = {
    FALL:             {'severity': 'high',   'source': 'pose'},
    PERSON_ON_GROUND: {'severity': 'medium', 'source': 'pose'},
    UNCONSCIOUS:      {'severity': 'high',   'source': 'pose'},
    HANDS_RAISED:     {'severity': 'low',    'source': 'pose'},
    VLM_DETECTION:    {'severity': 'high',   'source': 'external'},
}

# camelCase option names accepted by DetectionConfig.from_dict
_CAMEL_ALIASES = {
    'confidenceThreshold': 'confidence_threshold',
    'fallDropRatio': 'fall_drop_ratio',
    'fallWindowSec': 'fall_window_sec',
    'groundRatioThreshold': 'ground_ratio_threshold',
    'groundDurationSec': 'ground_duration_sec',
    'unconsciousStillnessSec': 'unconscious_stillness_sec',
    'stillnessThresholdPx': 'stillness_threshold_px',
    'handsRaisedMarginPx': 'hands_raised_margin_px',
    'handsRaisedConfidence': 'hands_raised_confidence',
    'cooldownSec': 'cooldown_sec',
    'historyWindowSec': 'history_window_sec',
    'maxHistorySamples': 'max_history_samples',
}


class DetectionConfigError(ValueError):
    """Raised when a DetectionConfig holds out-of-range values."""


@dataclass(frozen=True)
class DetectionConfig:
    """
    Thresholds for the pose event rules.
    Immutable for the lifetime of a detection session.
    """

    # ── Joint gating ──
    confidence_threshold: float = 0.3     # joints below this are "not observed"

    # ── Fall ──
    fall_drop_ratio: float = 0.3          # fractional posture-ratio drop
    fall_window_sec: float = 1.0          # drop must happen inside this window

    # ── Person on ground ──
    ground_ratio_threshold: float = 0.6   # posture ratio below this = low posture
    ground_duration_sec: float = 2.0      # sustained low posture

    # ── Unconscious ──
    unconscious_stillness_sec: float = 5.0
    stillness_threshold_px: float = 5.0   # mean joint displacement between samples

    # ── Hands raised ──
    hands_raised_margin_px: float = 20.0  # wrist above shoulder by more than this
    hands_raised_confidence: float = 0.9

    # ── Global ──
    cooldown_sec: float = 5.0             # suppress repeat of the same type
    history_window_sec: float = 10.0      # retained history per rule
    max_history_samples: int = 600        # ring buffer capacity (~60 s at 10 fps)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Fail fast on values no rule can work with."""
        # NaN/inf slip through every range comparison below
        non_finite = [f.name for f in fields(self) if not math.isfinite(getattr(self, f.name))]
        if non_finite:
            raise DetectionConfigError(f"{', '.join(non_finite)} must be finite numbers")

        errors = []

        for name in ('confidence_threshold', 'hands_raised_confidence'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f'{name} must be within [0, 1] (got {value})')

        if not 0.0 < self.fall_drop_ratio <= 1.0:
            errors.append(f'fall_drop_ratio must be within (0, 1] (got {self.fall_drop_ratio})')

        for name in ('fall_window_sec', 'history_window_sec', 'ground_ratio_threshold'):
            value = getattr(self, name)
            if value <= 0:
                errors.append(f'{name} must be positive (got {value})')

        for name in ('ground_duration_sec', 'unconscious_stillness_sec',
                     'stillness_threshold_px', 'hands_raised_margin_px', 'cooldown_sec'):
            value = getattr(self, name)
            if value < 0:
                errors.append(f'{name} must not be negative (got {value})')

        for name in ('ground_duration_sec', 'unconscious_stillness_sec', 'fall_window_sec'):
            value = getattr(self, name)
            if value > self.history_window_sec:
                errors.append(
                    f'{name} ({value}) exceeds history_window_sec ({self.history_window_sec})'
                )

        if self.max_history_samples < 2:
            errors.append(f'max_history_samples must be at least 2 (got {self.max_history_samples})')

        if errors:
            raise DetectionConfigError('; '.join(errors))

    @classmethod
    def from_dict(cls, data: dict) -> 'DetectionConfig':
        """Build a config from snake_case or camelCase option names."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name not in known:
                raise DetectionConfigError(f'Unknown detection option: {key}')
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
