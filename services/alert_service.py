"""
Alert Service — forwards confirmed detection events to the alert endpoint.

One outbound request per event. Failures are logged and reported as False;
they never reach back into detection state.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

import requests

from engines.pose_events.events import DetectionEvent

logger = logging.getLogger(__name__)


def format_timestamp(epoch_seconds: float) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2024-05-01T12:00:00.000Z"""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


class AlertService:
    def __init__(self, api_url: str, camera_id: str = 'camera-1', timeout: float = 5.0,
                 email_service=None, email_recipient: str = '', session=None):
        self.api_url = api_url
        self.camera_id = camera_id
        self.timeout = timeout
        self.email_service = email_service
        self.email_recipient = email_recipient
        self.session = session or requests.Session()
        self.sent = 0
        self.failed = 0

    def build_payload(self, event: DetectionEvent, session_started_at: float = 0.0,
                      frame_data_url: Optional[str] = None) -> dict:
        """Alert body. Event timestamps are session-relative; started_at anchors them."""
        return {
            'detectionType': event.type,
            'description': event.description,
            'timestamp': format_timestamp(session_started_at + event.timestamp),
            'frameDataUrl': frame_data_url,
            'cameraId': self.camera_id,
        }

    def send(self, event: DetectionEvent, session_started_at: float = 0.0,
             frame_data_url: Optional[str] = None) -> bool:
        payload = self.build_payload(event, session_started_at, frame_data_url)
        self._send_email(event, payload)

        if not self.api_url:
            logger.debug(f"No alert endpoint configured, {event.type} not forwarded")
            return False

        try:
            response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
            if response.status_code >= 400:
                self.failed += 1
                logger.warning(f"Alert endpoint returned {response.status_code}: {response.text}")
                return False
            self.sent += 1
            logger.info(f"Alert sent: {event.type} ({self.camera_id})")
            return True
        except requests.exceptions.Timeout:
            self.failed += 1
            logger.error(f"Timeout sending {event.type} alert")
        except requests.exceptions.RequestException as e:
            self.failed += 1
            logger.error(f"Failed to send {event.type} alert: {e}")
        return False

    def send_async(self, event: DetectionEvent, session_started_at: float = 0.0,
                   frame_data_url: Optional[str] = None) -> threading.Thread:
        """Fire-and-forget send on a daemon thread."""
        t = threading.Thread(
            target=self.send,
            args=(event, session_started_at, frame_data_url),
            daemon=True,
        )
        t.start()
        return t

    def _send_email(self, event: DetectionEvent, payload: dict) -> None:
        if not self.email_service or not self.email_recipient:
            return
        try:
            self.email_service.send_alert_email(
                recipient_email=self.email_recipient,
                alert_data={
                    'detection_type': event.type,
                    'severity': event.severity,
                    'camera_id': self.camera_id,
                    'description': event.description,
                    'confidence': event.confidence,
                    'timestamp': payload['timestamp'],
                },
            )
        except Exception as email_err:
            logger.error(f"Alert email failed: {email_err}")

    def get_stats(self) -> dict:
        return {'sent': self.sent, 'failed': self.failed}
