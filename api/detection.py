"""
Detection API — drive pose event detection sessions over HTTP.

One MonitoringSession per camera lives on `current_app.sessions`; new
sessions are built with `current_app.session_factory(camera_id)` and stopped
recordings are persisted through `current_app.recording_store`.
"""
import logging
import math
from flask import Blueprint, request, jsonify, current_app

from engines.pose_events.manager import NonMonotonicTimestampError
from services.recording_session import SessionStateError
from services.threat_classifier import ThreatClassifierError, ThreatVerdict

logger = logging.getLogger(__name__)

detection_bp = Blueprint('detection', __name__)


def _camera_id(data=None):
    if data and data.get('camera_id'):
        return str(data['camera_id'])
    return request.args.get('camera_id') or current_app.config.get('CAMERA_ID', 'camera-1')


def _active_session(camera_id):
    session = current_app.sessions.get(camera_id)
    if session is None or not session.active:
        raise SessionStateError(f"No active recording for {camera_id}")
    return session


def _timestamp(data):
    if 'timestamp' not in data:
        raise ValueError("timestamp is required")
    try:
        timestamp = float(data['timestamp'])
    except (TypeError, ValueError):
        raise ValueError(f"timestamp must be a number (got {data['timestamp']!r})")
    if not math.isfinite(timestamp):
        raise ValueError(f"timestamp must be a finite number (got {data['timestamp']!r})")
    if timestamp < 0:
        raise ValueError("timestamp must not be negative")
    return timestamp


@detection_bp.errorhandler(SessionStateError)
@detection_bp.errorhandler(NonMonotonicTimestampError)
def _conflict(e):
    return jsonify({"error": str(e)}), 409


@detection_bp.errorhandler(ValueError)
@detection_bp.errorhandler(ThreatClassifierError)
def _bad_request(e):
    return jsonify({"error": str(e)}), 400


@detection_bp.route('/sessions', methods=['POST'])
def start_session():
    """
    Start a recording session.

    JSON body (optional):
      - camera_id: defaults to the configured CAMERA_ID
      - replay: true to allow seeking backwards (recorded streams)
    """
    data = request.get_json(silent=True) or {}
    camera_id = _camera_id(data)

    session = current_app.sessions.get(camera_id)
    if session is None:
        session = current_app.session_factory(camera_id)
        current_app.sessions[camera_id] = session

    recording_id = session.start(replay=bool(data.get('replay', False)))
    return jsonify({
        "recording_id": recording_id,
        "camera_id": camera_id,
        "started_at": session.started_at,
        "mode": session.manager.get_stats()['mode'],
    }), 201


@detection_bp.route('/frames', methods=['POST'])
def process_frame():
    """Feed one pose frame: {camera_id?, timestamp, keypoints: [...], frameDataUrl?}"""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No data"}), 400
    if not isinstance(data.get('keypoints'), list):
        return jsonify({"error": "keypoints must be a list"}), 400

    session = _active_session(_camera_id(data))
    timestamp = _timestamp(data)
    try:
        events = session.process_frame(data['keypoints'], timestamp,
                                       frame_data_url=data.get('frameDataUrl'))
    except (KeyError, TypeError, AttributeError) as e:
        return jsonify({"error": f"Malformed keypoint: {e}"}), 400

    return jsonify({"events": [e.to_dict() for e in events]})


@detection_bp.route('/external-events', methods=['POST'])
def external_event():
    """
    Merge a classifier verdict: {camera_id?, timestamp, analysis: {threatDetected, ...}}
    Negative verdicts are acknowledged with event = null.
    """
    data = request.get_json(silent=True)
    if not data or 'analysis' not in data:
        return jsonify({"error": "analysis is required"}), 400

    session = _active_session(_camera_id(data))
    verdict = ThreatVerdict.from_dict(data['analysis'])
    event = verdict.to_event(_timestamp(data))
    if event is not None:
        session.add_external_event(event)

    return jsonify({"event": event.to_dict() if event else None})


@detection_bp.route('/transcript', methods=['POST'])
def add_transcript():
    """Append speech recognition output: {camera_id?, text, final?}"""
    data = request.get_json(silent=True) or {}
    session = _active_session(_camera_id(data))
    session.add_transcript(str(data.get('text', '')), final=bool(data.get('final', True)))
    return jsonify({"transcript": session.transcript})


@detection_bp.route('/events', methods=['GET'])
def get_events():
    camera_id = _camera_id()
    session = current_app.sessions.get(camera_id)
    events = session.snapshot_events() if session else []
    return jsonify({
        "camera_id": camera_id,
        "recording_id": session.recording_id if session else None,
        "events": [e.to_dict() for e in events],
        "total": len(events),
    })


@detection_bp.route('/sessions/stop', methods=['POST'])
def stop_session():
    """Stop the recording and persist its metadata. Body: {camera_id?, duration?}"""
    data = request.get_json(silent=True) or {}
    session = _active_session(_camera_id(data))

    duration = data.get('duration')
    metadata = session.stop(float(duration) if duration is not None else None)

    store = getattr(current_app, 'recording_store', None)
    if store is not None:
        try:
            store.save(metadata)
        except OSError as e:
            logger.error(f"Failed to save recording {metadata.id}: {e}")

    return jsonify(metadata.to_dict())


@detection_bp.route('/recordings', methods=['GET'])
def list_recordings():
    store = getattr(current_app, 'recording_store', None)
    recordings = store.list() if store is not None else []
    return jsonify({
        "recordings": [r.to_dict() for r in recordings],
        "total": len(recordings),
    })


@detection_bp.route('/stats', methods=['GET'])
def get_stats():
    camera_id = _camera_id()
    session = current_app.sessions.get(camera_id)
    if session is None:
        return jsonify({"error": f"Unknown camera: {camera_id}"}), 404
    stats = session.manager.get_stats()
    stats['camera_id'] = camera_id
    stats['recording_id'] = session.recording_id
    return jsonify(stats)
