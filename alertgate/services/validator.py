# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: structural validation of inbound Alertmanager webhooks.
Stateless — safe to share across request threads.
"""

from typing import Any, Dict, List

from pydantic import ValidationError

from alertgate.core.exceptions import MalformedPayloadError, SchemaValidationError
from alertgate.schemas import AlertmanagerWebhook


def _describe(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error["loc"]) or "(root)"
    return f"{location}: {error['msg']}"


class WebhookValidator:
    """Checks a raw body against the Alertmanager webhook contract."""

    def validate(self, payload: bytes) -> AlertmanagerWebhook:
        """Return the parsed webhook, or raise with every violation found.

        Raises MalformedPayloadError when the body is not JSON at all and
        SchemaValidationError when it is JSON but breaks the contract.
        """
        try:
            return AlertmanagerWebhook.model_validate_json(payload)
        except ValidationError as exc:
            errors = exc.errors(include_url=False)
            json_errors = [e for e in errors if e["type"] == "json_invalid"]
            if json_errors:
                raise MalformedPayloadError(
                    f"Invalid JSON format: {json_errors[0]['msg']}"
                ) from exc
            violations: List[str] = [_describe(e) for e in errors]
            raise SchemaValidationError(violations) from exc
