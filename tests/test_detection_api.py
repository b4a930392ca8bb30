"""
Tests for the /api/detection blueprint using the Flask test client.
"""

from unittest.mock import MagicMock

import pytest

from app import create_app
from engines.pose_events.keypoints import KEYPOINT_NAMES
from engines.pose_events.rules import DetectionConfig


# Posture ratio (centerY / height) 1.0 and 0.55, both 400 px tall
UPRIGHT = [(300, 200), (290, 220), (310, 220), (280, 240), (320, 240),
           (270, 300), (330, 300), (250, 380), (350, 380), (240, 480), (360, 480),
           (280, 520), (320, 520), (280, 560), (320, 560), (280, 600), (320, 600)]
LOW = [(300, 20), (290, 40), (310, 40), (280, 60), (320, 60),
       (270, 120), (330, 120), (250, 200), (350, 200), (240, 300), (360, 300),
       (280, 340), (320, 340), (280, 380), (320, 380), (280, 420), (320, 420)]


def _keypoints(coords):
    return [{'name': n, 'x': x, 'y': y, 'score': 0.9} for n, (x, y) in zip(KEYPOINT_NAMES, coords)]


@pytest.fixture
def alert_service():
    service = MagicMock()
    service.camera_id = 'cam-1'
    return service


@pytest.fixture
def app(tmp_path, alert_service):
    app = create_app(
        detection_config=DetectionConfig(cooldown_sec=5.0),
        alert_service=alert_service,
        recordings_dir=str(tmp_path / 'recordings'),
    )
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _start(client, **body):
    body.setdefault('camera_id', 'cam-1')
    return client.post('/api/detection/sessions', json=body)


def _frame(client, timestamp, coords, camera_id='cam-1'):
    return client.post('/api/detection/frames', json={
        'camera_id': camera_id,
        'timestamp': timestamp,
        'keypoints': _keypoints(coords),
    })


class TestHealth:
    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['detection_config']['cooldown_sec'] == 5.0


class TestSessions:
    def test_start(self, client):
        response = _start(client)
        assert response.status_code == 201
        data = response.get_json()
        assert data['recording_id'].startswith('recording-')
        assert data['mode'] == 'live'

    def test_start_replay(self, client):
        assert _start(client, replay=True).get_json()['mode'] == 'replay'

    def test_start_twice_conflicts(self, client):
        _start(client)
        assert _start(client).status_code == 409

    def test_stop_persists_metadata(self, client, app):
        _start(client)
        _frame(client, 0.0, UPRIGHT)
        _frame(client, 1.0, LOW)
        client.post('/api/detection/transcript', json={'camera_id': 'cam-1', 'text': 'help'})

        response = client.post('/api/detection/sessions/stop', json={'camera_id': 'cam-1', 'duration': 4.0})

        assert response.status_code == 200
        data = response.get_json()
        assert data['duration'] == 4.0
        assert data['transcript'] == 'help'
        assert [e['type'] for e in data['events']] == ['fall']
        assert app.recording_store.load(data['id']).duration == 4.0

        listed = client.get('/api/detection/recordings').get_json()
        assert listed['total'] == 1

    def test_stop_without_session(self, client):
        assert client.post('/api/detection/sessions/stop', json={}).status_code == 409


class TestFrames:
    def test_fall_detected(self, client, alert_service):
        _start(client)
        assert _frame(client, 0.0, UPRIGHT).get_json() == {'events': []}

        data = _frame(client, 1.0, LOW).get_json()

        assert [e['type'] for e in data['events']] == ['fall']
        assert data['events'][0]['description'] == 'possible fall detected'
        alert_service.send_async.assert_called_once()

    def test_missing_timestamp(self, client):
        _start(client)
        response = client.post('/api/detection/frames',
                               json={'camera_id': 'cam-1', 'keypoints': []})
        assert response.status_code == 400

    def test_missing_keypoints(self, client):
        _start(client)
        response = client.post('/api/detection/frames', json={'camera_id': 'cam-1', 'timestamp': 0})
        assert response.status_code == 400

    def test_malformed_keypoint(self, client):
        _start(client)
        response = client.post('/api/detection/frames', json={
            'camera_id': 'cam-1', 'timestamp': 0, 'keypoints': [{'name': 'nose'}],
        })
        assert response.status_code == 400

    @pytest.mark.parametrize('raw', ['NaN', 'Infinity', '"nan"'])
    def test_non_finite_timestamp(self, client, raw):
        _start(client)
        assert _frame(client, 2.0, UPRIGHT).status_code == 200
        body = '{"camera_id": "cam-1", "timestamp": %s, "keypoints": []}' % raw

        response = client.post('/api/detection/frames', data=body, content_type='application/json')

        assert response.status_code == 400
        assert 'finite' in response.get_json()['error']
        # the rejected frame does not disable the ordering check
        assert _frame(client, 1.0, UPRIGHT).status_code == 409

    def test_no_session(self, client):
        assert _frame(client, 0.0, UPRIGHT).status_code == 409

    def test_backwards_timestamp_conflicts(self, client):
        _start(client)
        _frame(client, 2.0, UPRIGHT)
        response = _frame(client, 1.0, UPRIGHT)
        assert response.status_code == 409
        assert 'before previous frame' in response.get_json()['error']

    def test_cameras_are_independent(self, client):
        _start(client, camera_id='cam-1')
        _start(client, camera_id='cam-2')
        _frame(client, 5.0, UPRIGHT, camera_id='cam-1')
        assert _frame(client, 1.0, UPRIGHT, camera_id='cam-2').status_code == 200


class TestExternalEvents:
    def _post(self, client, threat=True, timestamp=1.5):
        return client.post('/api/detection/external-events', json={
            'camera_id': 'cam-1',
            'timestamp': timestamp,
            'analysis': {
                'threatDetected': threat,
                'confidence': 0.7,
                'description': 'Aggressive posture',
                'category': 'violence',
                'explanation': 'Raised fist toward another person',
            },
        })

    def test_positive_verdict_merged(self, client):
        _start(client)
        _frame(client, 0.0, UPRIGHT)
        _frame(client, 1.0, LOW)

        data = self._post(client, timestamp=0.5).get_json()
        assert data['event']['type'] == 'vlm_detection'
        assert data['event']['category'] == 'violence'

        events = client.get('/api/detection/events?camera_id=cam-1').get_json()['events']
        assert [e['type'] for e in events] == ['vlm_detection', 'fall']

    def test_negative_verdict(self, client):
        _start(client)
        assert self._post(client, threat=False).get_json() == {'event': None}

    def test_missing_analysis(self, client):
        _start(client)
        response = client.post('/api/detection/external-events',
                               json={'camera_id': 'cam-1', 'timestamp': 1.0})
        assert response.status_code == 400

    def test_bad_timestamp(self, client):
        _start(client)
        assert self._post(client, timestamp=-1).status_code == 400


class TestStats:
    def test_stats(self, client):
        _start(client)
        _frame(client, 0.0, UPRIGHT)
        _frame(client, 1.0, LOW)
        data = client.get('/api/detection/stats?camera_id=cam-1').get_json()
        assert data['frames_processed'] == 2
        assert data['events'] == {'fall': 1}
        assert data['rules']['fall']['state'] == 'confirmed'

    def test_unknown_camera(self, client):
        assert client.get('/api/detection/stats?camera_id=nope').status_code == 404
