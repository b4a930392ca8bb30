"""
Keypoint Metrics — pose primitives and scalar summaries derived from them.
Every function here is pure: identical input gives identical output.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np


# COCO 17-keypoint vocabulary (MoveNet / YOLO-pose ordering)
KEYPOINT_NAMES = (
    'nose', 'left_eye', 'right_eye',
    'left_ear', 'right_ear',
    'left_shoulder', 'right_shoulder',
    'left_elbow', 'right_elbow',
    'left_wrist', 'right_wrist',
    'left_hip', 'right_hip',
    'left_knee', 'right_knee',
    'left_ankle', 'right_ankle',
)

# (wrist, shoulder) pairs on the same side of the body
WRIST_SHOULDER_PAIRS = (
    ('left_wrist', 'left_shoulder'),
    ('right_wrist', 'right_shoulder'),
)

MIN_OBSERVED_JOINTS = 2


@dataclass(frozen=True)
class Keypoint:
    """A named joint position (frame pixels) with its detection score."""
    name: str
    x: float
    y: float
    score: float = 0.0

    @classmethod
    def from_dict(cls, data: dict, index: Optional[int] = None) -> 'Keypoint':
        """
        Parse a MoveNet-style keypoint dict: {name, x, y, score}.
        'confidence' is accepted in place of 'score'; when 'name' is missing the
        position in the COCO vocabulary is used.
        """
        name = data.get('name')
        if name is None and index is not None and index < len(KEYPOINT_NAMES):
            name = KEYPOINT_NAMES[index]
        score = data.get('score', data.get('confidence'))
        return cls(
            name=str(name),
            x=float(data['x']),
            y=float(data['y']),
            score=float(score) if score is not None else 0.0,
        )

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'x': round(self.x, 3),
            'y': round(self.y, 3),
            'score': round(self.score, 3),
        }


PoseInput = Sequence[Union[Keypoint, dict]]


@dataclass(frozen=True)
class PoseMetrics:
    """Scalar summaries of one pose."""
    height: float       # vertical extent of observed joints (px)
    center_y: float     # score-weighted mean y (px)
    observed: int       # number of joints at/above the confidence threshold

    @property
    def posture_ratio(self) -> Optional[float]:
        """centerY-to-height ratio; None when the observed joints share one row."""
        if self.height <= 0:
            return None
        return self.center_y / self.height

    def to_dict(self) -> dict:
        return {
            'personHeight': round(self.height, 3),
            'centerY': round(self.center_y, 3),
            'observed': self.observed,
        }


def parse_keypoints(pose: PoseInput) -> List[Keypoint]:
    """Normalise a pose given as Keypoint objects or raw dicts."""
    parsed = []
    for idx, kp in enumerate(pose or ()):
        if isinstance(kp, Keypoint):
            parsed.append(kp)
        else:
            parsed.append(Keypoint.from_dict(kp, index=idx))
    return parsed


def observed_keypoints(pose: Iterable[Keypoint], threshold: float) -> List[Keypoint]:
    """Joints whose score reaches the threshold."""
    return [kp for kp in pose if kp.score >= threshold]


def keypoint_map(pose: Iterable[Keypoint], threshold: float) -> Dict[str, Tuple[float, float]]:
    """Observed joints by name → (x, y)."""
    return {kp.name: (kp.x, kp.y) for kp in observed_keypoints(pose, threshold)}


def calculate_person_height(pose: Iterable[Keypoint], threshold: float) -> Optional[float]:
    """Vertical extent between the highest and lowest observed joints."""
    observed = observed_keypoints(pose, threshold)
    if len(observed) < MIN_OBSERVED_JOINTS:
        return None
    ys = np.array([kp.y for kp in observed], dtype=np.float64)
    return float(ys.max() - ys.min())


def calculate_center_y(pose: Iterable[Keypoint], threshold: float) -> Optional[float]:
    """Score-weighted mean vertical position of the observed joints."""
    observed = observed_keypoints(pose, threshold)
    if len(observed) < MIN_OBSERVED_JOINTS:
        return None
    ys = np.array([kp.y for kp in observed], dtype=np.float64)
    weights = np.array([kp.score for kp in observed], dtype=np.float64)
    if weights.sum() <= 0:
        # threshold of 0 lets zero-score joints through
        return float(ys.mean())
    return float(np.average(ys, weights=weights))


def compute_pose_metrics(pose: Iterable[Keypoint], threshold: float) -> Optional[PoseMetrics]:
    """
    Height + centerY for a pose, or None when fewer than two joints are observed.
    A None result marks a no-evidence frame.
    """
    pose = list(pose)
    height = calculate_person_height(pose, threshold)
    center_y = calculate_center_y(pose, threshold)
    if height is None or center_y is None:
        return None
    return PoseMetrics(
        height=height,
        center_y=center_y,
        observed=len(observed_keypoints(pose, threshold)),
    )


def mean_displacement(prev: Dict[str, Tuple[float, float]],
                      curr: Dict[str, Tuple[float, float]]) -> Optional[float]:
    """Mean Euclidean displacement of joints observed in both samples."""
    shared = sorted(set(prev) & set(curr))
    if not shared:
        return None
    a = np.array([prev[name] for name in shared], dtype=np.float64)
    b = np.array([curr[name] for name in shared], dtype=np.float64)
    return float(np.linalg.norm(b - a, axis=1).mean())
