# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: hands a validated, deduplicated webhook to incident-management.

Each firing alert becomes an incident-creation request; resolved alerts are
acknowledged and skipped. Failures propagate so the caller can retry.
"""

from typing import Any, Dict, Optional

from alertgate.core.logging import get_logger
from alertgate.schemas import AlertmanagerAlert, AlertmanagerWebhook
from alertgate.services.incident_client import IncidentClient

logger = get_logger(__name__)

SEVERITY_ALIASES = {
    "critical": "critical", "p0": "critical",
    "high": "high", "p1": "high",
    "medium": "medium", "p2": "medium",
    "low": "low", "p3": "low",
}
DEFAULT_SEVERITY = "medium"
MAX_TITLE_LENGTH = 500


def determine_severity(alert: AlertmanagerAlert) -> str:
    raw = alert.labels.get("severity") or alert.labels.get("priority") or ""
    return SEVERITY_ALIASES.get(raw.strip().lower(), DEFAULT_SEVERITY)


def incident_title(alert: AlertmanagerAlert) -> str:
    summary = alert.annotations.get("summary")
    if summary:
        return summary[:MAX_TITLE_LENGTH]
    alertname = alert.labels.get("alertname")
    if alertname:
        instance = alert.labels.get("instance")
        title = f"{alertname} on {instance}" if instance else alertname
        return title[:MAX_TITLE_LENGTH]
    return "Alert Incident"


def incident_description(alert: AlertmanagerAlert) -> str:
    description = alert.annotations.get("description") or alert.annotations.get("summary") or ""
    if description:
        description += "\n\n"
    description += "Alert Details:\n"
    for key in sorted(alert.labels):
        description += f"- {key}: {alert.labels[key]}\n"
    return description


def incident_service(alert: AlertmanagerAlert) -> str:
    return alert.labels.get("service") or alert.labels.get("job") or "unknown"


class AlertProcessor:
    """The business-logic hand-off behind the ingestion pipeline."""

    def __init__(self, incident_client: IncidentClient):
        self._incident_client = incident_client

    def build_incident(self, alert: AlertmanagerAlert) -> Dict[str, Any]:
        return {
            "title": incident_title(alert),
            "service": incident_service(alert),
            "severity": determine_severity(alert),
            "description": incident_description(alert),
            "fingerprint": alert.fingerprint,
            "source": "alertmanager",
        }

    def process_webhook(self, webhook: AlertmanagerWebhook) -> int:
        """Forward every firing alert; return how many incidents were requested."""
        forwarded = 0
        for alert in webhook.alerts:
            if alert.status != "firing":
                logger.info("Skipping resolved alert fingerprint=%s", alert.fingerprint)
                continue
            incident_id: Optional[str] = self._incident_client.create_incident(
                self.build_incident(alert)
            )
            forwarded += 1
            logger.info(
                "Alert forwarded fingerprint=%s incident_id=%s",
                alert.fingerprint, incident_id,
            )
        return forwarded
