"""
Alert processor and incident-management client — Unit Tests
===========================================================
Run:  pytest test_alert_processor.py -v
"""
import json
from unittest.mock import MagicMock

import httpx
import pytest

from alertgate.core.exceptions import PermanentProcessingError, TransientProcessingError
from alertgate.schemas import AlertmanagerAlert, AlertmanagerWebhook
from alertgate.services.alert_processor import (
    AlertProcessor,
    determine_severity,
    incident_description,
    incident_service,
    incident_title,
)
from alertgate.services.incident_client import IncidentClient
from alertgate.services.retry import default_is_retryable


def _alert(**overrides) -> AlertmanagerAlert:
    data = {
        "fingerprint": "f1",
        "status": "firing",
        "startsAt": "2023-10-01T12:00:00Z",
        "labels": {"alertname": "HighLatency"},
    }
    data.update(overrides)
    return AlertmanagerAlert.model_validate(data)


def _client(handler) -> IncidentClient:
    return IncidentClient(
        base_url="http://incident-management:8002/",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


# ═══════════════════════════════════════════════════════════════════════════
# INCIDENT MAPPING
# ═══════════════════════════════════════════════════════════════════════════
class TestSeverity:
    @pytest.mark.parametrize("labels,expected", [
        ({"severity": "critical"}, "critical"),
        ({"severity": "P1"}, "high"),
        ({"severity": " Low "}, "low"),
        ({"priority": "p0"}, "critical"),
        ({"severity": "warning"}, "medium"),
        ({}, "medium"),
    ])
    def test_mapping(self, labels, expected):
        assert determine_severity(_alert(labels=labels)) == expected

    def test_severity_label_wins_over_priority(self):
        assert determine_severity(_alert(labels={"severity": "low", "priority": "p0"})) == "low"


class TestTitle:
    def test_summary_annotation_first(self):
        alert = _alert(annotations={"summary": "p99 above 2s"})
        assert incident_title(alert) == "p99 above 2s"

    def test_alertname_and_instance(self):
        alert = _alert(labels={"alertname": "HighLatency", "instance": "api-1:9090"})
        assert incident_title(alert) == "HighLatency on api-1:9090"

    def test_alertname_alone(self):
        assert incident_title(_alert()) == "HighLatency"

    def test_fallback(self):
        assert incident_title(_alert(labels={})) == "Alert Incident"

    def test_truncated(self):
        alert = _alert(annotations={"summary": "x" * 800})
        assert len(incident_title(alert)) == 500


class TestDescriptionAndService:
    def test_description_lists_labels_sorted(self):
        alert = _alert(
            labels={"zone": "eu", "alertname": "HighLatency"},
            annotations={"description": "Latency is high"},
        )
        assert incident_description(alert) == (
            "Latency is high\n\nAlert Details:\n- alertname: HighLatency\n- zone: eu\n"
        )

    def test_description_without_annotations(self):
        assert incident_description(_alert()) == "Alert Details:\n- alertname: HighLatency\n"

    @pytest.mark.parametrize("labels,expected", [
        ({"service": "checkout", "job": "node"}, "checkout"),
        ({"job": "node"}, "node"),
        ({}, "unknown"),
    ])
    def test_service(self, labels, expected):
        assert incident_service(_alert(labels=labels)) == expected


# ═══════════════════════════════════════════════════════════════════════════
# INCIDENT CLIENT
# ═══════════════════════════════════════════════════════════════════════════
class TestIncidentClient:
    def test_posts_incident_and_returns_id(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "inc-1"})

        client = _client(handler)
        assert client.create_incident({"title": "t"}) == "inc-1"
        assert seen["url"] == "http://incident-management:8002/api/v1/incidents"
        assert seen["body"] == {"title": "t"}

    def test_accepts_incident_id_key(self):
        client = _client(lambda request: httpx.Response(200, json={"incident_id": "inc-2"}))
        assert client.create_incident({}) == "inc-2"

    @pytest.mark.parametrize("response", [
        httpx.Response(201, text="created"),
        httpx.Response(201, json=["inc-1"]),
        httpx.Response(202, json={"queued": True}),
        httpx.Response(204),
    ])
    def test_any_success_status_counts_as_created(self, response):
        calls = []

        def handler(request):
            calls.append(request)
            return response

        assert _client(handler).create_incident({"title": "t"}) is None
        assert len(calls) == 1

    def test_odd_success_body_is_not_retried_by_the_pipeline(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(201, json=["unexpected"])

        processor = AlertProcessor(_client(handler))
        webhook = AlertmanagerWebhook(status="firing", alerts=[_alert()])
        assert processor.process_webhook(webhook) == 1
        assert len(calls) == 1

    @pytest.mark.parametrize("status", [500, 502, 503, 408, 429])
    def test_retryable_statuses_are_transient(self, status):
        client = _client(lambda request: httpx.Response(status, text="busy"))
        with pytest.raises(TransientProcessingError) as exc_info:
            client.create_incident({})
        assert str(status) in str(exc_info.value)
        assert default_is_retryable(exc_info.value) is True

    @pytest.mark.parametrize("status", [400, 404, 409, 422])
    def test_client_errors_are_permanent(self, status):
        client = _client(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(PermanentProcessingError) as exc_info:
            client.create_incident({})
        assert default_is_retryable(exc_info.value) is False

    def test_connection_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientProcessingError, match="unreachable"):
            _client(handler).create_incident({})

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientProcessingError, match="timed out"):
            _client(handler).create_incident({})

    def test_close(self):
        http = MagicMock(spec=httpx.Client)
        IncidentClient(base_url="http://x", client=http).close()
        http.close.assert_called_once()


# ═══════════════════════════════════════════════════════════════════════════
# PROCESSOR
# ═══════════════════════════════════════════════════════════════════════════
class TestAlertProcessor:
    def _webhook(self, *alerts) -> AlertmanagerWebhook:
        return AlertmanagerWebhook(status="firing", alerts=list(alerts))

    def test_forwards_only_firing_alerts(self):
        client = MagicMock(spec=IncidentClient)
        client.create_incident.return_value = "inc-1"
        webhook = self._webhook(
            _alert(fingerprint="a"),
            _alert(fingerprint="b", status="resolved"),
            _alert(fingerprint="c", labels={"alertname": "DiskFull", "severity": "critical"}),
        )
        assert AlertProcessor(client).process_webhook(webhook) == 2
        sent = [c.args[0] for c in client.create_incident.call_args_list]
        assert [i["fingerprint"] for i in sent] == ["a", "c"]
        assert sent[1]["severity"] == "critical"
        assert sent[1]["title"] == "DiskFull"

    def test_build_incident_shape(self):
        incident = AlertProcessor(MagicMock()).build_incident(
            _alert(labels={"alertname": "HighLatency", "service": "checkout"})
        )
        assert incident == {
            "title": "HighLatency",
            "service": "checkout",
            "severity": "medium",
            "description": "Alert Details:\n- alertname: HighLatency\n- service: checkout\n",
            "fingerprint": "f1",
            "source": "alertmanager",
        }

    def test_downstream_failure_propagates(self):
        client = MagicMock(spec=IncidentClient)
        client.create_incident.side_effect = TransientProcessingError("503")
        with pytest.raises(TransientProcessingError):
            AlertProcessor(client).process_webhook(self._webhook(_alert()))

    def test_all_resolved_forwards_nothing(self):
        client = MagicMock(spec=IncidentClient)
        webhook = self._webhook(_alert(status="resolved"))
        assert AlertProcessor(client).process_webhook(webhook) == 0
        client.create_incident.assert_not_called()
