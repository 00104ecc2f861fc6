# apps/alerts/dispatch.py
"""
Urgent delivery of CRITICAL alerts.

The monitor only decides that a critical alert must go out. The
dispatcher configured by LARDER_CRITICAL_ALERT_DISPATCHER (a dotted path)
decides how:

    LARDER_CRITICAL_ALERT_DISPATCHER = 'apps.alerts.dispatch.EmailAlertDispatcher'
    LARDER_ALERT_RECIPIENTS = ['ops@example.com']
"""
import logging
from abc import ABC, abstractmethod

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

DEFAULT_DISPATCHER = 'apps.alerts.dispatch.LoggingAlertDispatcher'


class CriticalAlertDispatcher(ABC):

    @abstractmethod
    def dispatch(self, alert):
        """Deliver one alert. May raise; the monitor logs and carries on."""


class LoggingAlertDispatcher(CriticalAlertDispatcher):
    """Writes critical alerts to the log."""

    def dispatch(self, alert):
        logger.critical(
            f"Critical {alert.alert_type.value} alert for {alert.item_id}: {alert.message}"
        )


class EmailAlertDispatcher(CriticalAlertDispatcher):
    """
    Emails critical alerts with EmailMultiAlternatives.

    Usage:
        dispatcher = EmailAlertDispatcher(recipients=['ops@example.com'])
        dispatcher.dispatch(alert)
    """

    def __init__(self, recipients=None, from_email=None):
        self.recipients = list(
            recipients if recipients is not None
            else getattr(settings, 'LARDER_ALERT_RECIPIENTS', [])
        )
        self.from_email = from_email or getattr(
            settings, 'DEFAULT_FROM_EMAIL', 'noreply@larder.local'
        )

    def render(self, alert):
        """Return (subject, text_body, html_body)."""
        subject = f"[{alert.severity.value}] {alert.alert_type.value}: {alert.item_id}"
        text_body = (
            f"{alert.message}\n\n"
            f"Threshold: {alert.threshold}\n"
            f"Current value: {alert.current_value}\n"
            f"Raised at: {alert.created_at.isoformat()}\n"
            f"Alert: {alert.id}\n"
        )
        html_body = (
            f"<h2>{alert.alert_type.value} alert for {alert.item_id}</h2>"
            f"<p>{alert.message}</p>"
            f"<table>"
            f"<tr><th>Threshold</th><td>{alert.threshold}</td></tr>"
            f"<tr><th>Current value</th><td>{alert.current_value}</td></tr>"
            f"<tr><th>Raised at</th><td>{alert.created_at.isoformat()}</td></tr>"
            f"</table>"
            f"<p><small>{alert.id}</small></p>"
        )
        return subject, text_body, html_body

    def dispatch(self, alert):
        if not self.recipients:
            logger.warning(f"No recipients configured for critical alert {alert.id}")
            return 0

        subject, text_body, html_body = self.render(alert)
        msg = EmailMultiAlternatives(
            subject=subject,
            body=text_body,
            from_email=self.from_email,
            to=self.recipients,
        )
        msg.attach_alternative(html_body, 'text/html')

        try:
            result = msg.send()
            logger.info(f"Critical alert {alert.id} emailed to {self.recipients}")
            return result
        except Exception as e:
            logger.error(f"Failed to email critical alert {alert.id}: {e}")
            raise


def get_critical_alert_dispatcher(path=None):
    """Instantiate the dispatcher named by LARDER_CRITICAL_ALERT_DISPATCHER."""
    path = path or getattr(settings, 'LARDER_CRITICAL_ALERT_DISPATCHER', DEFAULT_DISPATCHER)
    return import_string(path)()
