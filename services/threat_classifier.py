"""
Threat Classifier Service — external vision-language model integration

Runs on its own timer, independent of the pose rules. Positive verdicts are
wrapped as `vlm_detection` events and handed back to the caller, which merges
them into the session event list by timestamp.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from engines.pose_events.events import DetectionEvent, clamp, make_external_event

logger = logging.getLogger(__name__)


class ThreatClassifierError(Exception):
    """Transport, HTTP or payload failure talking to the analysis endpoint."""


def _parse_flag(value) -> bool:
    """Only a real true (or the string 'true') counts as a detection."""
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return value is True


@dataclass(frozen=True)
class ThreatVerdict:
    threat_detected: bool
    confidence: float
    description: str
    category: str
    explanation: str

    @classmethod
    def from_dict(cls, data: dict) -> 'ThreatVerdict':
        """
        Parse the `analysis` object of the endpoint response:
            {threatDetected, confidence, description, category, explanation}
        """
        if not isinstance(data, dict):
            raise ThreatClassifierError(f"analysis must be an object, got {type(data).__name__}")
        try:
            confidence = float(data.get('confidence', 0.0))
        except (TypeError, ValueError) as e:
            raise ThreatClassifierError(f"invalid confidence: {data.get('confidence')!r}") from e
        return cls(
            threat_detected=_parse_flag(data.get('threatDetected', False)),
            confidence=clamp(confidence),
            description=str(data.get('description') or ''),
            category=str(data.get('category') or 'unknown'),
            explanation=str(data.get('explanation') or ''),
        )

    def to_event(self, timestamp: float) -> Optional[DetectionEvent]:
        """A vlm_detection event for positive verdicts, otherwise None."""
        if not self.threat_detected:
            return None
        return make_external_event(
            timestamp=timestamp,
            confidence=self.confidence,
            description=self.description or f"{self.category} threat detected",
            category=self.category,
            explanation=self.explanation,
        )


class ThreatClassifierClient:
    """Thin requests wrapper around the analysis endpoint."""

    def __init__(self, api_url: str, timeout: float = 10.0, session=None):
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def analyze(self, frame_data_url: str, pose_data: Optional[dict] = None,
                timestamp: Optional[float] = None) -> ThreatVerdict:
        payload = {
            'frameDataUrl': frame_data_url,
            'poseData': pose_data,
            'timestamp': timestamp,
        }
        try:
            response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            raise ThreatClassifierError(f"analysis request failed: {e}") from e
        except ValueError as e:
            raise ThreatClassifierError(f"analysis response is not JSON: {e}") from e

        if not isinstance(body, dict) or 'analysis' not in body:
            raise ThreatClassifierError("analysis response has no 'analysis' field")
        return ThreatVerdict.from_dict(body['analysis'])


# (frame_data_url, pose_data, session_timestamp) or None when no frame is ready
FrameSnapshot = Optional[tuple]


class ThreatAnalysisLoop:
    """
    Calls the classifier every `interval_sec` on a background thread.

    frame_provider() -> (frame_data_url, pose_data, timestamp) | None
    on_event(event)  -> called for each positive verdict

    A failed tick is logged and the loop carries on with the next one.
    """

    def __init__(self, client: ThreatClassifierClient,
                 frame_provider: Callable[[], FrameSnapshot],
                 on_event: Callable[[DetectionEvent], None],
                 interval_sec: float = 1.5):
        self.client = client
        self.frame_provider = frame_provider
        self.on_event = on_event
        self.interval_sec = interval_sec
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0
        self.errors = 0
        self.detections = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='threat-analysis', daemon=True)
        self._thread.start()
        logger.info(f"Threat analysis loop started (every {self.interval_sec}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info(
            f"Threat analysis loop stopped — {self.ticks} ticks, "
            f"{self.detections} detections, {self.errors} errors"
        )

    def _run(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            self.tick()
            elapsed = time.monotonic() - started
            self._stop.wait(max(0.0, self.interval_sec - elapsed))

    def tick(self) -> Optional[DetectionEvent]:
        """One analysis round. Never raises."""
        self.ticks += 1
        try:
            snapshot = self.frame_provider()
            if snapshot is None:
                return None
            frame_data_url, pose_data, timestamp = snapshot
            verdict = self.client.analyze(frame_data_url, pose_data, timestamp)
            event = verdict.to_event(timestamp)
            if event is None:
                return None
            self.detections += 1
            logger.info(
                f"Threat detected: {verdict.category} at t={timestamp:.2f}s "
                f"(confidence: {verdict.confidence:.0%})"
            )
            self.on_event(event)
            return event
        except ThreatClassifierError as e:
            self.errors += 1
            logger.warning(f"Threat analysis failed: {e}")
        except Exception as e:
            self.errors += 1
            logger.error(f"Threat analysis tick error: {e}", exc_info=True)
        return None
