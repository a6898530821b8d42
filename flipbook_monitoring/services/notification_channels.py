"""
Notification channels for performance alerts
Delivers alerts to the console, email (SMTP), Slack and generic webhooks.
"""
import asyncio
import json
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import aiohttp

from flipbook_monitoring.config import Settings, get_settings
from flipbook_monitoring.models.alerts import ALL_SEVERITIES, Alert, AlertChannel, AlertSeverity
from flipbook_monitoring.utils.helpers import iso, utc_now
from flipbook_monitoring.utils.logger import log
from flipbook_monitoring.utils.retry import DeliveryError, RetryPolicy

SEVERITY_COLORS = {
    AlertSeverity.LOW: "#ffeb3b",
    AlertSeverity.MEDIUM: "#ff9800",
    AlertSeverity.HIGH: "#f44336",
    AlertSeverity.CRITICAL: "#d32f2f",
}

SEVERITY_EMOJI = {
    AlertSeverity.LOW: "\U0001F7E1",
    AlertSeverity.MEDIUM: "\U0001F7E0",
    AlertSeverity.HIGH: "\U0001F534",
    AlertSeverity.CRITICAL: "\U0001F6A8",
}

EMAIL_RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
)

HTTP_RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
)


def _parse_headers(raw: str) -> Dict[str, str]:
    if not raw:
        return {}
    try:
        headers = json.loads(raw)
    except ValueError:
        log.warning("ALERT_WEBHOOK_HEADERS is not valid JSON, ignoring it")
        return {}
    if not isinstance(headers, dict):
        log.warning("ALERT_WEBHOOK_HEADERS must be a JSON object, ignoring it")
        return {}
    return {str(key): str(value) for key, value in headers.items()}


def build_default_channels(settings: Optional[Settings] = None) -> List[AlertChannel]:
    """Console always on; email, Slack and webhook enabled when configured"""
    settings = settings or get_settings()

    smtp_configured = all([
        settings.smtp_host,
        settings.smtp_user,
        settings.smtp_password,
        settings.alert_email_to,
    ])

    return [
        AlertChannel(
            type="console",
            enabled=True,
            config={},
            severity_filter=list(ALL_SEVERITIES),
        ),
        AlertChannel(
            type="email",
            enabled=smtp_configured,
            config={
                "from": settings.alert_email_from or settings.smtp_user,
                "to": settings.alert_email_to,
                "subject": settings.alert_email_subject,
                "smtp_host": settings.smtp_host,
                "smtp_port": settings.smtp_port,
                "smtp_user": settings.smtp_user,
                "smtp_password": settings.smtp_password,
            },
            severity_filter=[AlertSeverity.HIGH, AlertSeverity.CRITICAL],
        ),
        AlertChannel(
            type="slack",
            enabled=bool(settings.slack_webhook_url),
            config={
                "webhook_url": settings.slack_webhook_url,
                "channel": settings.slack_alert_channel,
            },
            severity_filter=[AlertSeverity.MEDIUM, AlertSeverity.HIGH, AlertSeverity.CRITICAL],
        ),
        AlertChannel(
            type="webhook",
            enabled=bool(settings.alert_webhook_url),
            config={
                "url": settings.alert_webhook_url,
                "headers": _parse_headers(settings.alert_webhook_headers),
            },
            severity_filter=list(ALL_SEVERITIES),
        ),
    ]


class NotificationSender:
    """
    Delivers a single alert through a single channel.

    ``send`` raises on failure so the caller can record which channels
    succeeded. Email, Slack and webhook deliveries retry transient failures
    with exponential backoff.
    """

    # Retry configuration
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds
    HTTP_TIMEOUT = 30  # seconds

    def __init__(
        self,
        source: Optional[str] = None,
        app_name: Optional[str] = None,
        retry_max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.source = source or settings.alert_source
        self.app_name = app_name or settings.app_name
        self.retry_max_attempts = retry_max_attempts or self.RETRY_MAX_ATTEMPTS
        self.retry_base_delay = self.RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay

        # Track delivery stats
        self.total_sent = 0
        self.total_failed = 0
        self.total_retries = 0

    async def send(self, channel: AlertChannel, alert: Alert) -> None:
        if channel.type == "console":
            self.send_console(alert)
        elif channel.type == "email":
            await self._deliver(channel, self._send_email, channel, alert, retryable=EMAIL_RETRYABLE_EXCEPTIONS)
        elif channel.type == "slack":
            await self._deliver(channel, self._send_slack, channel, alert, retryable=HTTP_RETRYABLE_EXCEPTIONS)
        elif channel.type == "webhook":
            await self._deliver(channel, self._send_webhook, channel, alert, retryable=HTTP_RETRYABLE_EXCEPTIONS)
        else:
            raise ValueError(f"Unknown notification channel: {channel.type}")

    async def _deliver(self, channel: AlertChannel, func, *args, retryable) -> None:
        policy = RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.RETRY_MAX_DELAY,
            transient_types=retryable,
        )
        try:
            await policy.run(func, *args)
        except Exception:
            self.total_failed += 1
            log.bind(channel=channel.type, retry=policy.record.to_dict()).error(
                f"{channel.type} notification failed after {policy.record.attempts} attempts"
            )
            raise

        self.total_sent += 1
        if policy.record.attempts > 1:
            self.total_retries += policy.record.attempts - 1
            log.info(f"{channel.type} notification sent after {policy.record.attempts} attempts")

    def send_console(self, alert: Alert) -> None:
        emoji = SEVERITY_EMOJI.get(alert.severity, "")
        print(f"{emoji} ALERT [{alert.severity.value.upper()}]: {alert.message}", flush=True)
        self.total_sent += 1

    # Email

    def _send_email(self, channel: AlertChannel, alert: Alert) -> Any:
        return asyncio.to_thread(self._send_smtp, channel.config, alert)

    def _send_smtp(self, config: Dict[str, Any], alert: Alert) -> None:
        if not config.get("smtp_host") or not config.get("to"):
            raise DeliveryError("Email not configured")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{config.get('subject')} - {alert.severity.value.upper()}"
        msg["From"] = config.get("from") or config.get("smtp_user")
        msg["To"] = config["to"]

        msg.attach(MIMEText(alert.message, "plain"))
        msg.attach(MIMEText(self.create_html_email(alert), "html"))

        with smtplib.SMTP(config["smtp_host"], config.get("smtp_port") or 587, timeout=self.HTTP_TIMEOUT) as server:
            server.starttls()
            if config.get("smtp_user"):
                server.login(config["smtp_user"], config.get("smtp_password") or "")
            server.send_message(msg)

    def create_html_email(self, alert: Alert) -> str:
        """Create HTML email body"""
        color = SEVERITY_COLORS.get(alert.severity, "#6c757d")

        rows = {
            "Metric": alert.metric,
            "Current Value": alert.current_value,
            "Threshold": alert.threshold,
            "Comparison": alert.comparison.value.replace("_", " "),
            "Alert ID": alert.id,
            "Time": iso(alert.timestamp),
        }

        html = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
        .header {{ background-color: {color}; color: white; padding: 20px; }}
        .content {{ padding: 20px; }}
        .footer {{ background-color: #f8f9fa; padding: 10px; text-align: center; font-size: 12px; }}
        .data-table {{ width: 100%; border-collapse: collapse; margin-top: 20px; }}
        .data-table td {{ padding: 8px; border-bottom: 1px solid #dee2e6; }}
        .data-table td:first-child {{ font-weight: bold; width: 40%; }}
    </style>
</head>
<body>
    <div class="header">
        <h2>{self.app_name} Alert</h2>
        <p>Severity: {alert.severity.value.upper()}</p>
    </div>
    <div class="content">
        <p>{alert.message}</p>
        <table class="data-table">
"""
        for key, value in rows.items():
            html += f"<tr><td>{key}</td><td>{value}</td></tr>"

        html += """
        </table>
    </div>
    <div class="footer">
        <p>""" + self.app_name + """</p>
        <p>Generated at """ + utc_now().strftime("%Y-%m-%d %H:%M:%S UTC") + """</p>
    </div>
</body>
</html>
"""
        return html

    # Slack

    def build_slack_payload(self, channel: AlertChannel, alert: Alert) -> Dict[str, Any]:
        return {
            "channel": channel.config.get("channel"),
            "attachments": [
                {
                    "color": SEVERITY_COLORS.get(alert.severity),
                    "title": f"{self.app_name} Alert - {alert.severity.value.upper()}",
                    "text": alert.message,
                    "fields": [
                        {"title": "Metric", "value": alert.metric, "short": True},
                        {"title": "Current Value", "value": str(alert.current_value), "short": True},
                        {"title": "Threshold", "value": str(alert.threshold), "short": True},
                        {"title": "Time", "value": iso(alert.timestamp), "short": True},
                    ],
                    "footer": f"{self.app_name} Monitoring",
                    "ts": int(alert.timestamp.timestamp()),
                }
            ],
        }

    async def _send_slack(self, channel: AlertChannel, alert: Alert) -> None:
        url = channel.config.get("webhook_url")
        if not url:
            raise DeliveryError("Slack not configured")
        await self.post_json(url, self.build_slack_payload(channel, alert), label="Slack webhook")

    # Generic webhook

    def build_webhook_payload(self, alert: Alert) -> Dict[str, Any]:
        return {
            "alert": alert.to_dict(),
            "timestamp": iso(utc_now()),
            "source": self.source,
        }

    async def _send_webhook(self, channel: AlertChannel, alert: Alert) -> None:
        url = channel.config.get("url")
        if not url:
            raise DeliveryError("Webhook not configured")
        await self.post_json(
            url,
            self.build_webhook_payload(alert),
            headers=channel.config.get("headers") or {},
            label="Webhook",
        )

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        label: str = "POST",
    ) -> None:
        """POST a JSON body, raising DeliveryError on a non-2xx response"""
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.HTTP_TIMEOUT)) as session:
            async with session.post(url, json=payload, headers=request_headers) as response:
                if response.status >= 300:
                    raise DeliveryError(f"{label} failed: {response.status} {response.reason}", status=response.status)

    def get_delivery_stats(self) -> Dict[str, Any]:
        total_attempts = self.total_sent + self.total_failed
        success_rate = (self.total_sent / total_attempts * 100) if total_attempts > 0 else 0.0

        return {
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
            "total_retries": self.total_retries,
            "success_rate": round(success_rate, 2),
            "retry_config": {
                "max_attempts": self.retry_max_attempts,
                "base_delay": self.retry_base_delay,
                "max_delay": self.RETRY_MAX_DELAY,
            },
        }
