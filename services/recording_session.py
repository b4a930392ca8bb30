"""
Recording Session — lifecycle of one monitored recording.

Wraps a DetectionManager for a single camera: resets it on start, feeds it
pose frames, forwards confirmed events to the alert service, merges
external (classifier) events by timestamp, accumulates the final speech
transcript, and produces the recording metadata on stop.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from engines.pose_events.events import DetectionEvent, insert_event
from engines.pose_events.keypoints import compute_pose_metrics, parse_keypoints
from engines.pose_events.manager import DetectionManager
from services.threat_classifier import ThreatAnalysisLoop

logger = logging.getLogger(__name__)

NO_TRANSCRIPT = 'No speech detected'


class SessionStateError(RuntimeError):
    """Operation not allowed in the session's current state."""


@dataclass
class RecordingMetadata:
    id: str
    started_at: float                 # epoch seconds
    duration: float                   # seconds
    events: List[DetectionEvent] = field(default_factory=list)
    transcript: str = NO_TRANSCRIPT

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'timestamp': self.started_at,
            'duration': round(self.duration, 3),
            'events': [e.to_dict() for e in self.events],
            'transcript': self.transcript,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RecordingMetadata':
        return cls(
            id=data['id'],
            started_at=float(data.get('timestamp', 0.0)),
            duration=float(data.get('duration', 0.0)),
            events=[DetectionEvent.from_dict(e) for e in data.get('events', [])],
            transcript=data.get('transcript') or NO_TRANSCRIPT,
        )


class MonitoringSession:
    """
    One camera, one recording at a time.

    Frames may arrive from several request threads at once: start, process_frame
    and stop are serialised by a per-session frame lock, since the
    DetectionManager itself is not thread-safe. External events from the
    classifier thread are merged under a separate event lock.
    """

    def __init__(self, manager: Optional[DetectionManager] = None, alert_service=None,
                 camera_id: str = 'camera-1', classifier=None, analysis_interval: float = 1.5,
                 clock=time.time):
        self.manager = manager or DetectionManager()
        self.alert_service = alert_service
        self.camera_id = camera_id
        self._clock = clock
        self._lock = threading.Lock()
        self._frame_lock = threading.Lock()
        self.recording_id: Optional[str] = None
        self.started_at: Optional[float] = None
        self.events: List[DetectionEvent] = []
        self._transcript: List[str] = []
        self._last_timestamp = 0.0
        self._latest_pose: Optional[dict] = None
        self._latest_frame: Optional[str] = None
        self.classifier = classifier
        self.analysis_interval = analysis_interval
        self._analysis_loop: Optional[ThreatAnalysisLoop] = None

    @property
    def active(self) -> bool:
        return self.recording_id is not None

    def _require_active(self) -> None:
        if not self.active:
            raise SessionStateError(f"No active recording for {self.camera_id}")

    def start(self, replay: bool = False) -> str:
        with self._frame_lock:
            if self.active:
                raise SessionStateError(f"Recording {self.recording_id} already in progress")
            self.manager.reset(replay=replay)
            self.started_at = self._clock()
            self.recording_id = f"recording-{int(self.started_at * 1000)}"
            with self._lock:
                self.events = []
            self._transcript = []
            self._last_timestamp = 0.0
            self._latest_pose = None
            self._latest_frame = None
        if self.classifier is not None:
            self._analysis_loop = ThreatAnalysisLoop(
                self.classifier, self.analysis_snapshot, self._on_external_event,
                interval_sec=self.analysis_interval,
            )
            self._analysis_loop.start()
        logger.info(f"Recording {self.recording_id} started on {self.camera_id}")
        return self.recording_id

    def process_frame(self, pose, timestamp: float,
                      frame_data_url: Optional[str] = None) -> List[DetectionEvent]:
        """Run detection on one frame; returns the events confirmed on it."""
        keypoints = parse_keypoints(pose)
        with self._frame_lock:
            self._require_active()
            events = self.manager.detect_all(keypoints, timestamp)
            self._last_timestamp = float(timestamp)
            self._remember_pose(keypoints)
            if frame_data_url:
                self._latest_frame = frame_data_url

            for event in events:
                with self._lock:
                    insert_event(self.events, event)
                if self.alert_service is not None:
                    self.alert_service.send_async(event, self.started_at, frame_data_url)
        return events

    def _remember_pose(self, keypoints) -> None:
        metrics = compute_pose_metrics(keypoints, self.manager.config.confidence_threshold)
        if metrics is None:
            return
        self._latest_pose = {
            'keypoints': [kp.to_dict() for kp in keypoints],
            **metrics.to_dict(),
        }

    def latest_pose_data(self) -> Optional[dict]:
        """Pose data sent along with classifier requests: {keypoints, personHeight, centerY, observed}."""
        return self._latest_pose

    def analysis_snapshot(self):
        """(frame_data_url, pose_data, timestamp) for the classifier, or None before the first frame."""
        if not self.active or self._latest_frame is None:
            return None
        return self._latest_frame, self._latest_pose, self._last_timestamp

    def _on_external_event(self, event: DetectionEvent) -> None:
        if self.active:
            self.add_external_event(event)

    def add_external_event(self, event: DetectionEvent) -> DetectionEvent:
        """Merge an externally produced event (e.g. vlm_detection) by timestamp."""
        self._require_active()
        with self._lock:
            insert_event(self.events, event)
        logger.info(f"External event {event.type} merged at t={event.timestamp:.2f}s")
        if self.alert_service is not None:
            self.alert_service.send_async(event, self.started_at)
        return event

    def add_transcript(self, text: str, final: bool = True) -> None:
        """Only final speech results are kept; interim results are ignored."""
        self._require_active()
        if final and text and text.strip():
            self._transcript.append(text.strip())

    @property
    def transcript(self) -> str:
        return ' '.join(self._transcript) or NO_TRANSCRIPT

    def snapshot_events(self) -> List[DetectionEvent]:
        with self._lock:
            return list(self.events)

    def stop(self, duration: Optional[float] = None) -> RecordingMetadata:
        with self._frame_lock:
            self._require_active()
            if self._analysis_loop is not None:
                self._analysis_loop.stop(timeout=self.analysis_interval + 1.0)
                self._analysis_loop = None
            if duration is None:
                duration = max(0.0, self._clock() - self.started_at)
            metadata = RecordingMetadata(
                id=self.recording_id,
                started_at=self.started_at,
                duration=duration,
                events=self.snapshot_events(),
                transcript=self.transcript,
            )
            logger.info(
                f"Recording {self.recording_id} stopped: {len(metadata.events)} events, "
                f"{duration:.1f}s"
            )
            self.recording_id = None
        return metadata


class RecordingStore:
    """Recording metadata persisted as one JSON file per recording."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, recording_id: str) -> str:
        if os.sep in recording_id or (os.altsep and os.altsep in recording_id):
            raise ValueError(f"Invalid recording id: {recording_id}")
        return os.path.join(self.directory, f"{recording_id}.json")

    def save(self, metadata: RecordingMetadata) -> str:
        path = self._path(metadata.id)
        with open(path, 'w') as f:
            json.dump(metadata.to_dict(), f, indent=2)
        logger.info(f"Saved recording metadata: {path}")
        return path

    def load(self, recording_id: str) -> RecordingMetadata:
        with open(self._path(recording_id)) as f:
            return RecordingMetadata.from_dict(json.load(f))

    def list(self) -> List[RecordingMetadata]:
        """All stored recordings, newest first."""
        recordings = []
        for name in os.listdir(self.directory):
            if not name.endswith('.json'):
                continue
            try:
                recordings.append(self.load(name[:-len('.json')]))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable recording {name}: {e}")
        return sorted(recordings, key=lambda r: r.started_at, reverse=True)

    def delete(self, recording_id: str) -> bool:
        path = self._path(recording_id)
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True
