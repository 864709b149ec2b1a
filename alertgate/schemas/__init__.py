# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Pydantic schemas — webhook payload contract and API response shapes.
"""

import re
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

VALID_STATUSES = ("firing", "resolved")
AlertStatus = Literal["firing", "resolved"]

# RFC 3339 date-time, as produced by Alertmanager.
_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def _require_rfc3339(value):
    if value is None:
        return value
    if not isinstance(value, str) or not _RFC3339.match(value):
        raise ValueError("must be an RFC 3339 date-time string")
    return value


class AlertmanagerAlert(BaseModel):
    """One alert inside an Alertmanager webhook."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fingerprint: str = Field(..., min_length=1)
    status: AlertStatus
    starts_at: datetime = Field(..., alias="startsAt")
    ends_at: Optional[datetime] = Field(default=None, alias="endsAt")
    labels: Dict[str, str]
    annotations: Dict[str, str] = Field(default_factory=dict)
    generator_url: Optional[str] = Field(default=None, alias="generatorURL")

    @field_validator("starts_at", "ends_at", mode="before")
    @classmethod
    def check_timestamp_format(cls, v):
        return _require_rfc3339(v)


class AlertmanagerWebhook(BaseModel):
    """Inbound Alertmanager webhook payload (version 4 wire format)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: Optional[str] = None
    group_key: Optional[str] = Field(default=None, alias="groupKey")
    status: AlertStatus
    receiver: Optional[str] = None
    group_labels: Dict[str, str] = Field(default_factory=dict, alias="groupLabels")
    common_labels: Dict[str, str] = Field(default_factory=dict, alias="commonLabels")
    common_annotations: Dict[str, str] = Field(default_factory=dict, alias="commonAnnotations")
    external_url: Optional[str] = Field(default=None, alias="externalURL")
    alerts: List[AlertmanagerAlert] = Field(..., min_length=1)


class WebhookAccepted(BaseModel):
    """Response after a webhook was processed (or recognised as a duplicate)."""
    status: str = "success"
    message: str
    code: int = 200


class WebhookError(BaseModel):
    """Structured error response for the webhook endpoint."""
    status: str = "error"
    error: str
    code: int
    reason: str
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    request_id: Optional[str] = None
