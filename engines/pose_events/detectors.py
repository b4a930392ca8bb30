"""
Pose Rules — one evaluator per detection type.

Each rule looks at the current frame (keypoints + metrics) and the rule's own
history of earlier evidence frames, and proposes at most one candidate.
Rules never mutate history; the DebounceManager owns it.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from engines.pose_events.events import DetectionCandidate, clamp
from engines.pose_events.history import FrameHistory
from engines.pose_events.keypoints import (
    WRIST_SHOULDER_PAIRS, Keypoint, PoseMetrics, keypoint_map, mean_displacement,
)
from engines.pose_events.rules import (
    FALL, HANDS_RAISED, PERSON_ON_GROUND, UNCONSCIOUS, DetectionConfig,
)

Joints = Dict[str, Tuple[float, float]]


def _keypoints_payload(pose: Sequence[Keypoint]) -> List[dict]:
    return [kp.to_dict() for kp in pose]


def _ground_duration(metrics: PoseMetrics, timestamp: float,
                     history: FrameHistory, config: DetectionConfig) -> float:
    """Length of the trailing low-posture run ending at this frame (0 if not low)."""
    if metrics.posture_ratio >= config.ground_ratio_threshold:
        return 0.0
    run_start = timestamp
    for sample in history.trailing():
        if sample.posture_ratio >= config.ground_ratio_threshold:
            break
        run_start = sample.timestamp
    return timestamp - run_start


def _stillness_duration(joints: Joints, timestamp: float,
                        history: FrameHistory, config: DetectionConfig) -> float:
    """Length of the trailing run of near-zero joint displacement ending at this frame."""
    newer_joints, still_start = joints, timestamp
    for sample in history.trailing():
        displacement = mean_displacement(sample.joints, newer_joints)
        if displacement is None or displacement > config.stillness_threshold_px:
            break
        newer_joints, still_start = sample.joints, sample.timestamp
    return timestamp - still_start


class PoseRule:
    """
    Shared interface for the closed set of pose rules.

    Subclasses set `type` and implement `evaluate`; `has_evidence` decides
    whether the frame carries the joints the rule needs (by default, a
    posture ratio). Frames without evidence are skipped entirely (no
    evaluation, no history update).
    """

    type: str = ''

    def __init__(self, config: DetectionConfig):
        self.config = config

    def has_evidence(self, pose: Sequence[Keypoint], metrics: PoseMetrics) -> bool:
        return metrics.posture_ratio is not None

    def evaluate(self, pose: Sequence[Keypoint], metrics: PoseMetrics,
                 timestamp: float, history: FrameHistory) -> Optional[DetectionCandidate]:
        raise NotImplementedError

    def _candidate(self, confidence: float, timestamp: float,
                   description: str, **payload) -> DetectionCandidate:
        return DetectionCandidate(
            type=self.type,
            confidence=clamp(confidence),
            timestamp=timestamp,
            description=description,
            payload=payload,
        )


class FallRule(PoseRule):
    """Sudden drop of the posture ratio inside a short window."""

    type = FALL

    def evaluate(self, pose, metrics, timestamp, history):
        window = history.since(timestamp - self.config.fall_window_sec)
        if not window:
            return None

        reference = window[0]
        ref_ratio = reference.posture_ratio
        if ref_ratio <= 0:
            return None

        drop = (ref_ratio - metrics.posture_ratio) / ref_ratio
        if drop < self.config.fall_drop_ratio:
            return None

        return self._candidate(
            confidence=drop / (2.0 * self.config.fall_drop_ratio),
            timestamp=timestamp,
            description='possible fall detected',
            keypoints=_keypoints_payload(pose),
            drop_ratio=drop,
            window_sec=timestamp - reference.timestamp,
        )


class PersonOnGroundRule(PoseRule):
    """Low posture held continuously for ground_duration_sec."""

    type = PERSON_ON_GROUND

    def evaluate(self, pose, metrics, timestamp, history):
        duration = _ground_duration(metrics, timestamp, history, self.config)
        required = self.config.ground_duration_sec
        if metrics.posture_ratio >= self.config.ground_ratio_threshold or duration < required:
            return None

        excess = (duration - required) / required if required > 0 else 1.0
        return self._candidate(
            confidence=min(1.0, 0.6 + 0.4 * excess),
            timestamp=timestamp,
            description=f'person on the ground for {duration:.1f}s',
            keypoints=_keypoints_payload(pose),
            ground_duration=duration,
        )


class UnconsciousRule(PoseRule):
    """On the ground AND no joint movement for unconscious_stillness_sec."""

    type = UNCONSCIOUS

    def evaluate(self, pose, metrics, timestamp, history):
        ground_required = self.config.ground_duration_sec
        ground = _ground_duration(metrics, timestamp, history, self.config)
        if metrics.posture_ratio >= self.config.ground_ratio_threshold or ground < ground_required:
            return None

        still_required = self.config.unconscious_stillness_sec
        joints = keypoint_map(pose, self.config.confidence_threshold)
        still = _stillness_duration(joints, timestamp, history, self.config)
        if still < still_required:
            return None

        ground_excess = clamp((ground - ground_required) / ground_required) if ground_required > 0 else 1.0
        still_excess = clamp((still - still_required) / still_required) if still_required > 0 else 1.0
        return self._candidate(
            confidence=0.5 + 0.25 * ground_excess + 0.25 * still_excess,
            timestamp=timestamp,
            description=f'possible unconscious person (no movement for {still:.1f}s)',
            keypoints=_keypoints_payload(pose),
            ground_duration=ground,
            stillness_duration=still,
        )


class HandsRaisedRule(PoseRule):
    """Single-frame gesture: a wrist clearly above its shoulder."""

    type = HANDS_RAISED

    def _observed_pairs(self, pose) -> List[Tuple[Tuple[float, float], Tuple[float, float]]]:
        joints = keypoint_map(pose, self.config.confidence_threshold)
        return [
            (joints[wrist], joints[shoulder])
            for wrist, shoulder in WRIST_SHOULDER_PAIRS
            if wrist in joints and shoulder in joints
        ]

    def has_evidence(self, pose, metrics):
        return bool(self._observed_pairs(pose))

    def evaluate(self, pose, metrics, timestamp, history):
        raised = [
            shoulder[1] - wrist[1]
            for wrist, shoulder in self._observed_pairs(pose)
            if shoulder[1] - wrist[1] > self.config.hands_raised_margin_px
        ]
        if not raised:
            return None

        return self._candidate(
            confidence=self.config.hands_raised_confidence,
            timestamp=timestamp,
            description='hands raised' if len(raised) > 1 else 'hand raised',
            keypoints=_keypoints_payload(pose),
            raised_count=len(raised),
            margin_px=max(raised),
        )


# Fixed rule set, in evaluation order
RULE_CLASSES = (FallRule, PersonOnGroundRule, UnconsciousRule, HandsRaisedRule)


def build_rules(config: DetectionConfig) -> List[PoseRule]:
    return [rule_cls(config) for rule_cls in RULE_CLASSES]
