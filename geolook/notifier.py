# geolook/notifier.py
import os
import asyncio
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
import logging

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Mails CRITICAL alert events. Other levels only reach the dashboard."""

    def __init__(self):
        self.smtp_server = os.getenv("SMTP_SERVER", "smtp.gmail.com")
        self.port = int(os.getenv("SMTP_PORT", 587))
        self.sender = os.getenv("EMAIL_SENDER")
        self.password = os.getenv("EMAIL_PASSWORD")
        self.recipient = os.getenv("EMAIL_RECIPIENT", self.sender)
        if not self.enabled:
            logger.info("Email credentials not set. Email notifications disabled.")

    @property
    def enabled(self) -> bool:
        return bool(self.sender and self.password)

    def build_message(self, alert: dict) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[GEOLOOK] {alert['level']} Alert - {alert['sensorType']}"
        msg["From"] = self.sender or ""
        msg["To"] = self.recipient or ""
        llm_summary = alert.get("llm_summary", "")
        html = f"""<html><body style="font-family: Arial, sans-serif;">
            <h2 style="color: #DC2626;">Critical Alert</h2>
            <p><strong>{alert['message']}</strong></p>
            <table style="border-collapse: collapse; margin: 20px 0;">
                <tr><td style="padding: 8px; border: 1px solid #ddd;"><strong>Sensor</strong></td>
                    <td style="padding: 8px; border: 1px solid #ddd;">{alert['sensorType']}</td></tr>
                <tr><td style="padding: 8px; border: 1px solid #ddd;"><strong>Rule</strong></td>
                    <td style="padding: 8px; border: 1px solid #ddd;">{alert['ruleId']}</td></tr>
                <tr><td style="padding: 8px; border: 1px solid #ddd;"><strong>Value</strong></td>
                    <td style="padding: 8px; border: 1px solid #ddd;">{alert.get('value', 'N/A')}</td></tr>
                <tr><td style="padding: 8px; border: 1px solid #ddd;"><strong>Threshold</strong></td>
                    <td style="padding: 8px; border: 1px solid #ddd;">{alert.get('condition', '')} {alert.get('threshold', 'N/A')}</td></tr>
            </table>
            {f'<div style="background: #f3f4f6; padding: 15px; border-radius: 5px;"><h3>Analysis</h3><p>{llm_summary}</p></div>' if llm_summary else ''}
            <p style="color: #666; margin-top: 20px;">Time: {alert['timestamp']}<br>Geolook Alert System</p>
        </body></html>"""
        msg.attach(MIMEText(html, "html"))
        return msg

    async def send(self, alert: dict) -> bool:
        if not self.enabled:
            logger.info(f"[Email disabled] {alert['message']}")
            return False
        if alert["level"] != "CRITICAL":
            return False
        msg = self.build_message(alert)
        try:
            await asyncio.to_thread(self._send_sync, msg)
            logger.info(f"Email notification sent for {alert['id']}")
            return True
        except Exception as e:
            logger.error(f"Email send error: {e}")
            return False

    def _send_sync(self, msg):
        with smtplib.SMTP(self.smtp_server, self.port) as server:
            server.starttls()
            server.login(self.sender, self.password)
            server.send_message(msg)
