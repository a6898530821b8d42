"""
Performance endpoint tests.

Guards:
1. realtime / stats / export and the date validation around them
2. POST actions record metrics and reject missing fields
3. DELETE cleanup by cutoff
"""
import pytest

from flipbook_monitoring.utils.helpers import parse_datetime

WINDOW = {"startDate": "2024-01-01T00:00:00Z", "endDate": "2024-01-02T00:00:00Z"}


def _load(client, document_id, start, end, success=True, error_type=None):
    payload = {
        "action": "recordDocumentLoad",
        "documentId": document_id,
        "userId": "user-1",
        "startTime": start,
        "endTime": end,
        "success": success,
    }
    if error_type:
        payload["errorType"] = error_type
    return client.post("/api/monitoring/performance", json=payload)


@pytest.fixture
def loaded(client):
    _load(client, "doc-1", "2024-01-01T11:59:00Z", "2024-01-01T11:59:01Z")
    _load(client, "doc-2", "2024-01-01T11:59:00Z", "2024-01-01T11:59:02Z")
    _load(client, "doc-3", "2024-01-01T11:59:00Z", "2024-01-01T11:59:03Z")
    _load(client, "doc-4", "2024-01-01T11:59:00Z", "2024-01-01T11:59:00.500Z", success=False, error_type="NETWORK_FAILURE")
    return client


def test_record_document_load(client):
    response = _load(client, "doc-1", "2024-01-01T11:59:00Z", "2024-01-01T11:59:01Z")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Metric recorded successfully"}


def test_stats_over_window(loaded):
    response = loaded.get("/api/monitoring/performance", params={"type": "stats", **WINDOW})

    data = response.json()["data"]
    assert data["documentLoadingSuccessRate"] == 75
    assert data["averageLoadTime"] == 2000
    assert data["errorRateByType"] == {"NETWORK_FAILURE": 25}


def test_realtime_default(loaded):
    data = loaded.get("/api/monitoring/performance").json()["data"]

    assert data["averageResponseTime"] == 2000
    assert data["queueDepth"] == 0


def test_export(loaded):
    body = loaded.get("/api/monitoring/performance", params={"type": "export"}).json()

    assert body["count"] == 4
    assert {m["documentId"] for m in body["data"]} == {"doc-1", "doc-2", "doc-3", "doc-4"}


def test_stats_requires_dates(client):
    response = client.get("/api/monitoring/performance", params={"type": "stats"})

    assert response.status_code == 400
    assert response.json()["error"] == "startDate and endDate are required for stats"


def test_invalid_dates_and_type(client):
    bad_date = client.get("/api/monitoring/performance", params={"type": "stats", "startDate": "yesterday", "endDate": "today"})
    bad_type = client.get("/api/monitoring/performance", params={"type": "weekly"})

    assert bad_date.status_code == 400
    assert bad_date.json()["error"] == "Invalid date format"
    assert bad_type.status_code == 400
    assert bad_type.json()["error"] == "Invalid type parameter. Use: realtime, stats, or export"


def test_missing_fields(client):
    response = client.post("/api/monitoring/performance", json={"action": "recordError", "type": "TIMEOUT"})

    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields: message"


def test_record_error_and_interaction(client, monitoring):
    error = client.post(
        "/api/monitoring/performance",
        json={"action": "recordError", "type": "TIMEOUT", "message": "conversion timed out", "documentId": "doc-1"},
    )
    interaction = client.post(
        "/api/monitoring/performance",
        json={"action": "recordUserInteraction", "interactionAction": "zoom", "userId": "user-1"},
    )

    assert error.status_code == 200
    assert interaction.status_code == 200
    assert len(monitoring.performance_monitor) == 2


def test_record_conversion(client, monitoring):
    response = client.post(
        "/api/monitoring/performance",
        json={
            "action": "recordConversion",
            "documentId": "doc-1",
            "startTime": "2024-01-01T11:58:00Z",
            "endTime": "2024-01-01T11:59:00Z",
            "success": True,
        },
    )

    assert response.status_code == 200
    stats = monitoring.performance_monitor.get_performance_stats(
        parse_datetime(WINDOW["startDate"]), parse_datetime(WINDOW["endDate"])
    )
    assert stats.average_conversion_time == 60000


def test_invalid_action(client):
    response = client.post("/api/monitoring/performance", json={"action": "recordNothing"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid action"


def test_cleanup(loaded):
    response = loaded.delete("/api/monitoring/performance", params={"olderThan": "2024-01-01T11:59:02Z"})

    assert response.json()["message"] == "Cleaned up 2 old metrics"


def test_cleanup_requires_cutoff(client):
    response = client.delete("/api/monitoring/performance")

    assert response.status_code == 400
    assert response.json()["error"] == "olderThan parameter is required"
