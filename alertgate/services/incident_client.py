# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
HTTP client for Incident Management service.

Unlike a fire-and-forget notifier, every failure is raised and classified so
the retry executor can tell transient trouble from a request that will never
succeed.
"""

from typing import Any, Dict, Optional

import httpx

from alertgate.core.config import settings
from alertgate.core.exceptions import PermanentProcessingError, TransientProcessingError
from alertgate.core.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset({408, 429})


def _incident_id(resp: httpx.Response) -> Optional[str]:
    # Any 2xx means the incident exists, so an odd body must not raise.
    try:
        data = resp.json()
    except ValueError:
        logger.warning("Incident-management answered %s with a non-JSON body", resp.status_code)
        return None
    if not isinstance(data, dict):
        return None
    return data.get("id") or data.get("incident_id")


class IncidentClient:
    """Communicates with the Incident Management Service."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.Client] = None):
        self._base_url = (base_url or settings.INCIDENT_MANAGEMENT_URL).rstrip("/")
        self._client = client or httpx.Client(
            timeout=timeout if timeout is not None else settings.DOWNSTREAM_TIMEOUT_SECONDS
        )

    def create_incident(self, incident: Dict[str, Any]) -> Optional[str]:
        """POST an incident; return its id as reported by incident-management."""
        url = f"{self._base_url}/api/v1/incidents"
        try:
            resp = self._client.post(url, json=incident)
        except httpx.TimeoutException as exc:
            raise TransientProcessingError(f"Incident-management timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientProcessingError(f"Incident-management unreachable: {exc}") from exc

        if resp.is_success:
            return _incident_id(resp)

        body = resp.text[:200]
        if resp.status_code >= 500 or resp.status_code in RETRYABLE_STATUSES:
            raise TransientProcessingError(
                f"Incident-management returned {resp.status_code}: {body}"
            )
        logger.warning("Incident-management rejected incident %s: %s", resp.status_code, body)
        raise PermanentProcessingError(
            f"Incident-management rejected incident with {resp.status_code}: {body}"
        )

    def close(self):
        self._client.close()
