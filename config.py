"""
Configuration Management for the Pose Event Detection backend
Loads environment variables and provides configuration settings
"""

import math
import os
from dotenv import load_dotenv

from engines.pose_events.rules import DetectionConfig

# Load environment variables
load_dotenv()


def _env_float(name, default):
    value = os.getenv(name)
    return float(value) if value not in (None, '') else default


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    # Server
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', 5000))

    # Camera / session
    CAMERA_ID = os.getenv('CAMERA_ID', 'camera-1')
    RECORDINGS_DIR = os.getenv('RECORDINGS_DIR', 'recordings')

    # Alert forwarding
    ALERT_API_URL = os.getenv('ALERT_API_URL', '')
    ALERT_TIMEOUT = float(os.getenv('ALERT_TIMEOUT', 5))
    ALERT_EMAIL_RECIPIENT = os.getenv('ALERT_EMAIL_RECIPIENT', '')

    # External threat classifier (vision-language model)
    VLM_API_URL = os.getenv('VLM_API_URL', '')
    VLM_INTERVAL_SEC = float(os.getenv('VLM_INTERVAL_SEC', 1.5))
    VLM_TIMEOUT = float(os.getenv('VLM_TIMEOUT', 10))

    # AWS SES (Email Service)
    AWS_ACCESS_KEY_ID = os.getenv('AWS_ACCESS_KEY_ID', '')
    AWS_SECRET_ACCESS_KEY = os.getenv('AWS_SECRET_ACCESS_KEY', '')
    AWS_REGION = os.getenv('AWS_REGION', 'us-east-1')
    SES_SENDER_EMAIL = os.getenv('SES_SENDER_EMAIL', 'noreply@example.com')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', '')

    # Detection thresholds (unset → DetectionConfig default)
    DETECTION_ENV = {
        'confidence_threshold': 'DETECTION_CONFIDENCE_THRESHOLD',
        'fall_drop_ratio': 'DETECTION_FALL_DROP_RATIO',
        'fall_window_sec': 'DETECTION_FALL_WINDOW_SEC',
        'ground_ratio_threshold': 'DETECTION_GROUND_RATIO_THRESHOLD',
        'ground_duration_sec': 'DETECTION_GROUND_DURATION_SEC',
        'unconscious_stillness_sec': 'DETECTION_UNCONSCIOUS_STILLNESS_SEC',
        'stillness_threshold_px': 'DETECTION_STILLNESS_THRESHOLD_PX',
        'hands_raised_margin_px': 'DETECTION_HANDS_RAISED_MARGIN_PX',
        'hands_raised_confidence': 'DETECTION_HANDS_RAISED_CONFIDENCE',
        'cooldown_sec': 'DETECTION_COOLDOWN_SEC',
        'history_window_sec': 'DETECTION_HISTORY_WINDOW_SEC',
        'max_history_samples': 'DETECTION_MAX_HISTORY_SAMPLES',
    }

    @classmethod
    def detection_config(cls) -> DetectionConfig:
        """Build a DetectionConfig from DETECTION_* environment variables."""
        defaults = DetectionConfig()
        overrides = {}
        for field_name, env_name in cls.DETECTION_ENV.items():
            default = getattr(defaults, field_name)
            value = _env_float(env_name, None)
            if value is None:
                continue
            if isinstance(default, int) and math.isfinite(value):
                value = int(value)
            overrides[field_name] = value
        return DetectionConfig(**overrides)

    @staticmethod
    def init_app(app):
        """Initialize application with config"""
        pass
