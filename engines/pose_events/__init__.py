"""
Pose Event Detection Engine
Turns a stream of pose keypoints into debounced detection events:
fall, person_on_ground, unconscious, hands_raised.

Usage:
    from engines.pose_events import DetectionManager, DetectionConfig

    manager = DetectionManager(DetectionConfig(cooldown_sec=5.0))
    manager.reset()                      # at the start of every session

    events = manager.detect_all(keypoints, timestamp)
    for event in events:
        forward(event.to_dict())
"""

from engines.pose_events.debounce import DebounceManager, DebounceState
from engines.pose_events.events import (
    DetectionCandidate, DetectionEvent, insert_event, make_external_event, merge_events,
)
from engines.pose_events.keypoints import (
    KEYPOINT_NAMES, Keypoint, PoseMetrics, compute_pose_metrics, parse_keypoints,
)
from engines.pose_events.manager import DetectionManager, NonMonotonicTimestampError
from engines.pose_events.rules import (
    DETECTION_METADATA, DETECTION_ORDER, DetectionConfig, DetectionConfigError,
)

__all__ = [
    'DetectionManager', 'NonMonotonicTimestampError',
    'DetectionConfig', 'DetectionConfigError', 'DETECTION_METADATA', 'DETECTION_ORDER',
    'DetectionEvent', 'DetectionCandidate', 'make_external_event', 'insert_event', 'merge_events',
    'Keypoint', 'PoseMetrics', 'KEYPOINT_NAMES', 'compute_pose_metrics', 'parse_keypoints',
    'DebounceManager', 'DebounceState',
]
