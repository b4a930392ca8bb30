"""
Tests for AlertService (HTTP forwarding) and the SES EmailService.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from engines.pose_events.events import DetectionEvent
from services.alert_service import AlertService, format_timestamp
from services.email_service import EmailService


def _event(event_type='fall', timestamp=2.5):
    return DetectionEvent(
        type=event_type,
        timestamp=timestamp,
        confidence=0.8,
        description='possible fall detected',
        payload={'keypoints': []},
    )


def _service(status=200, **kwargs):
    session = MagicMock()
    session.post.return_value = MagicMock(status_code=status, text='')
    return AlertService('http://alerts/api', camera_id='cam-7', session=session, **kwargs), session


class TestFormatTimestamp:
    def test_iso_utc_millis(self):
        assert format_timestamp(0.0) == '1970-01-01T00:00:00.000Z'
        assert format_timestamp(1.2345) == '1970-01-01T00:00:01.234Z'


class TestAlertPayload:
    def test_fields(self):
        service, _ = _service()
        payload = service.build_payload(_event(), session_started_at=1000.0,
                                        frame_data_url='data:image/jpeg;base64,AAA')
        assert payload == {
            'detectionType': 'fall',
            'description': 'possible fall detected',
            'timestamp': '1970-01-01T00:16:42.500Z',
            'frameDataUrl': 'data:image/jpeg;base64,AAA',
            'cameraId': 'cam-7',
        }


class TestAlertSend:
    def test_one_post_per_event(self):
        service, session = _service()
        assert service.send(_event()) is True
        assert service.send(_event('hands_raised')) is True
        assert session.post.call_count == 2
        assert service.get_stats() == {'sent': 2, 'failed': 0}

    def test_http_error_reported_as_false(self):
        service, _ = _service(status=503)
        assert service.send(_event()) is False
        assert service.failed == 1

    def test_transport_error_reported_as_false(self):
        service, session = _service()
        session.post.side_effect = requests.exceptions.ConnectionError('down')
        assert service.send(_event()) is False

    def test_timeout_reported_as_false(self):
        service, session = _service()
        session.post.side_effect = requests.exceptions.Timeout()
        assert service.send(_event()) is False

    def test_no_endpoint(self):
        service = AlertService('', session=MagicMock())
        assert service.send(_event()) is False
        service.session.post.assert_not_called()

    def test_send_async_runs_on_daemon_thread(self):
        service, session = _service()
        thread = service.send_async(_event())
        thread.join(timeout=2.0)
        assert thread.daemon
        session.post.assert_called_once()

    def test_email_sent_with_alert(self):
        email = MagicMock()
        service, _ = _service(email_service=email, email_recipient='ops@example.com')
        service.send(_event())
        kwargs = email.send_alert_email.call_args.kwargs
        assert kwargs['recipient_email'] == 'ops@example.com'
        assert kwargs['alert_data']['detection_type'] == 'fall'
        assert kwargs['alert_data']['severity'] == 'high'

    def test_email_failure_does_not_block_alert(self):
        email = MagicMock()
        email.send_alert_email.side_effect = RuntimeError('smtp down')
        service, session = _service(email_service=email, email_recipient='ops@example.com')
        assert service.send(_event()) is True
        session.post.assert_called_once()


class TestEmailService:
    def _alert(self):
        return {
            'detection_type': 'person_on_ground',
            'severity': 'medium',
            'camera_id': 'cam-7',
            'description': 'person on the ground for 2.4s',
            'confidence': 0.64,
            'timestamp': '2024-05-01T12:00:00.000Z',
        }

    def test_development_mode_does_not_send(self):
        with patch('services.email_service.boto3') as boto3:
            service = EmailService('key', 'secret', 'us-east-1', 'noreply@example.com',
                                   development_mode=True)
            assert service.send_alert_email('ops@example.com', self._alert()) == 'dev_mode_alert'
            boto3.client.assert_not_called()

    def test_production_mode_sends_via_ses(self):
        with patch('services.email_service.boto3') as boto3:
            ses = boto3.client.return_value
            ses.send_email.return_value = {'MessageId': 'msg-123'}
            service = EmailService('key', 'secret', 'us-east-1', 'noreply@example.com',
                                   development_mode=False)

            assert service.send_alert_email('ops@example.com', self._alert()) == 'msg-123'

            kwargs = ses.send_email.call_args.kwargs
            assert kwargs['Destination'] == {'ToAddresses': ['ops@example.com']}
            assert 'Person On Ground' in kwargs['Message']['Subject']['Data']
            assert '64%' in kwargs['Message']['Body']['Text']['Data']

    def test_ses_error_returns_none(self):
        with patch('services.email_service.boto3') as boto3:
            ses = boto3.client.return_value
            ses.send_email.side_effect = ClientError(
                {'Error': {'Code': 'MessageRejected', 'Message': 'rejected'}}, 'SendEmail')
            service = EmailService('key', 'secret', 'us-east-1', 'noreply@example.com',
                                   development_mode=False)
            assert service.send_alert_email('ops@example.com', self._alert()) is None

    @pytest.mark.parametrize('env_value, expected', [('true', True), ('false', False)])
    def test_development_mode_from_env(self, monkeypatch, env_value, expected):
        monkeypatch.setenv('EMAIL_DEVELOPMENT_MODE', env_value)
        with patch('services.email_service.boto3') as boto3:
            service = EmailService('key', 'secret', 'eu-west-1', 'noreply@example.com')
            assert service.development_mode is expected
            assert (service.ses_client is None) is expected
            if not expected:
                boto3.client.assert_called_once_with(
                    'ses', region_name='eu-west-1',
                    aws_access_key_id='key', aws_secret_access_key='secret')
