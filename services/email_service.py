"""Email Service - AWS SES Alert Notifications with Development Mode"""
import boto3
from botocore.exceptions import BotoCoreError, ClientError
import logging
import os

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    'HIGH': '#ef4444',
    'MEDIUM': '#f59e0b',
    'LOW': '#3b82f6',
}


def _development_mode_from_env():
    return os.getenv('EMAIL_DEVELOPMENT_MODE', 'true').lower() == 'true'


class EmailService:
    """Detection alert emails over SES; development mode only logs them."""

    def __init__(self, aws_access_key, aws_secret_key, aws_region, sender_email, development_mode=None):
        self.sender_email = sender_email
        self.development_mode = (_development_mode_from_env() if development_mode is None
                                 else development_mode)
        self.ses_client = None
        if self.development_mode:
            logger.info("Alert emails will be logged only (EMAIL_DEVELOPMENT_MODE)")
            return

        self.ses_client = boto3.client('ses', region_name=aws_region,
                                       aws_access_key_id=aws_access_key,
                                       aws_secret_access_key=aws_secret_key)
        logger.info(f"Alert emails via SES ({aws_region}) from {sender_email}")

    @staticmethod
    def _render(alert_data):
        """Subject, text and HTML bodies for one detection alert."""
        event_type = alert_data.get('detection_type', 'unknown').replace('_', ' ').title()
        severity = alert_data.get('severity', 'medium').upper()
        camera_id = alert_data.get('camera_id', 'N/A')
        description = alert_data.get('description', 'Event detected')
        timestamp = alert_data.get('timestamp', 'N/A')
        confidence = alert_data.get('confidence')
        confidence_text = f"{confidence:.0%}" if isinstance(confidence, (int, float)) else 'N/A'
        color = SEVERITY_COLORS.get(severity, SEVERITY_COLORS['MEDIUM'])

        subject = f"Detection Alert: {event_type} ({severity})"

        html_body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; padding: 2rem;">
            <div style="max-width: 500px; margin: 0 auto; border: 1px solid #30363d; border-radius: 8px;">
                <div style="background: {color}; padding: 1rem; text-align: center;">
                    <h2 style="margin: 0; color: white;">{severity} ALERT</h2>
                </div>
                <div style="padding: 1.5rem;">
                    <h3 style="margin-top: 0;">{event_type}</h3>
                    <p>{description}</p>
                    <table style="width: 100%; font-size: 14px;">
                        <tr><td>Camera</td><td>{camera_id}</td></tr>
                        <tr><td>Time</td><td>{timestamp}</td></tr>
                        <tr><td>Confidence</td><td>{confidence_text}</td></tr>
                    </table>
                </div>
            </div>
        </body>
        </html>
        """

        text_body = f"""Detection Alert: {event_type}
Severity: {severity}
Camera: {camera_id}
Time: {timestamp}
Confidence: {confidence_text}
Description: {description}
"""
        return subject, text_body, html_body

    def send_alert_email(self, recipient_email, alert_data):
        """Send a detection alert email. Returns the SES message id, or None on failure."""
        subject, text_body, html_body = self._render(alert_data)

        if self.development_mode:
            logger.info("=" * 60)
            logger.info("DEVELOPMENT MODE - Alert Email NOT sent")
            logger.info(f"To: {recipient_email}")
            logger.info(f"Subject: {subject}")
            logger.info("=" * 60)
            return "dev_mode_alert"

        try:
            response = self.ses_client.send_email(
                Source=self.sender_email,
                Destination={'ToAddresses': [recipient_email]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Text': {'Data': text_body, 'Charset': 'UTF-8'},
                        'Html': {'Data': html_body, 'Charset': 'UTF-8'}
                    }
                }
            )
            logger.info(f"Alert email sent to {recipient_email}")
            return response['MessageId']
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send alert email: {e}")
            return None
