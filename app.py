"""
Pose Event Detection Backend - Main Application
Turns streamed pose keypoints into fall / on-ground / unconscious / hands-raised alerts
"""

import os
import logging
from flask import Flask, jsonify
from config import Config
from engines.pose_events.manager import DetectionManager
from services.alert_service import AlertService
from services.email_service import EmailService
from services.recording_session import MonitoringSession, RecordingStore
from services.threat_classifier import ThreatClassifierClient

logger = logging.getLogger(__name__)


def configure_logging(level=None, log_file=None):
    """Root logging setup — entry points only."""
    handlers = [logging.StreamHandler()]
    log_file = log_file if log_file is not None else Config.LOG_FILE
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def _build_email_service():
    if not Config.ALERT_EMAIL_RECIPIENT:
        return None
    try:
        return EmailService(
            aws_access_key=Config.AWS_ACCESS_KEY_ID,
            aws_secret_key=Config.AWS_SECRET_ACCESS_KEY,
            aws_region=Config.AWS_REGION,
            sender_email=Config.SES_SENDER_EMAIL,
        )
    except Exception as e:
        logger.warning(f"Email service not available: {e}")
        return None


def create_app(detection_config=None, alert_service=None, recordings_dir=None, classifier=None):
    """Build the Flask app. Arguments override the environment (used by tests)."""
    app = Flask(__name__)
    app.config.from_object(Config)
    app.url_map.strict_slashes = False
    Config.init_app(app)

    detection_config = detection_config or Config.detection_config()
    if alert_service is None and Config.ALERT_API_URL:
        alert_service = AlertService(
            api_url=Config.ALERT_API_URL,
            camera_id=Config.CAMERA_ID,
            timeout=Config.ALERT_TIMEOUT,
            email_service=_build_email_service(),
            email_recipient=Config.ALERT_EMAIL_RECIPIENT,
        )
    if classifier is None and Config.VLM_API_URL:
        classifier = ThreatClassifierClient(Config.VLM_API_URL, timeout=Config.VLM_TIMEOUT)

    def session_factory(camera_id):
        service = alert_service
        if service is not None and service.camera_id != camera_id:
            service = AlertService(
                api_url=service.api_url,
                camera_id=camera_id,
                timeout=service.timeout,
                email_service=service.email_service,
                email_recipient=service.email_recipient,
            )
        return MonitoringSession(
            manager=DetectionManager(detection_config),
            alert_service=service,
            camera_id=camera_id,
            classifier=classifier,
            analysis_interval=Config.VLM_INTERVAL_SEC,
        )

    # One session per camera, shared with the blueprint
    app.sessions = {}
    app.session_factory = session_factory
    app.recording_store = RecordingStore(recordings_dir or Config.RECORDINGS_DIR)
    app.detection_config = detection_config

    from api.detection import detection_bp
    app.register_blueprint(detection_bp, url_prefix='/api/detection')

    @app.route('/api')
    def api_info():
        return jsonify({
            "message": "Pose Event Detection API",
            "version": "1.0.0",
            "status": "online"
        })

    @app.route('/health')
    def health():
        active = [cid for cid, s in app.sessions.items() if s.active]
        return jsonify({
            "status": "healthy",
            "active_sessions": active,
            "alerts": "enabled" if alert_service is not None else "disabled",
            "threat_classifier": "enabled" if classifier is not None else "disabled",
            "detection_config": app.detection_config.to_dict(),
        })

    return app


if __name__ == '__main__':
    configure_logging()
    app = create_app()
    logger.info("Starting Pose Event Detection Backend...")
    logger.info(f"Server running on {Config.HOST}:{Config.PORT}")
    app.run(host=Config.HOST, port=Config.PORT, debug=Config.FLASK_ENV == 'development')
