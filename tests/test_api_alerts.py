"""
Alert endpoint tests.

Guards:
1. List, filter and stats responses
2. action=test / action=trigger and their 400s
3. Rule and channel updates with their 400/404 messages
"""


def test_list_empty(client):
    response = client.get("/api/monitoring/alerts")

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": [], "count": 0}


def test_trigger_then_list_and_stats(client):
    response = client.post("/api/monitoring/alerts?action=trigger", json={"metrics": {"queue_depth": 60}})

    body = response.json()
    assert response.status_code == 200
    assert body["message"] == "Triggered 1 alerts"
    assert body["data"][0]["ruleId"] == "queue_depth"

    listed = client.get("/api/monitoring/alerts", params={"resolved": "false", "severity": "high"}).json()
    assert listed["count"] == 1

    stats = client.get("/api/monitoring/alerts", params={"action": "stats"}).json()
    assert stats["data"]["total"] == 1
    assert stats["data"]["byMetric"] == {"queue_depth": 1}


def test_trigger_requires_metrics(client):
    response = client.post("/api/monitoring/alerts?action=trigger", json={})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Metrics are required"}


def test_invalid_action(client):
    response = client.post("/api/monitoring/alerts?action=explode")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid action"


def test_test_notifications(client, sender):
    response = client.post("/api/monitoring/alerts?action=test")

    body = response.json()
    assert body["message"] == "Test notifications sent"
    assert body["data"] == {"console": True, "slack": False}
    assert [channel for channel, _ in sender.sent] == ["console"]


def test_update_rule(client):
    response = client.put(
        "/api/monitoring/alerts?type=rule",
        json={"ruleId": "queue_depth", "updates": {"threshold": 75}},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Alert rule updated successfully"

    rules = client.get("/api/monitoring/alerts/rules").json()["data"]
    assert [r["threshold"] for r in rules if r["id"] == "queue_depth"] == [75]


def test_update_rule_errors(client):
    missing = client.put("/api/monitoring/alerts?type=rule", json={"ruleId": "queue_depth"})
    unknown = client.put("/api/monitoring/alerts?type=rule", json={"ruleId": "nope", "updates": {"enabled": False}})

    assert missing.status_code == 400
    assert missing.json()["error"] == "Rule ID and updates are required"
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "Alert rule not found"


def test_update_rule_rejects_invalid_values(client):
    response = client.put(
        "/api/monitoring/alerts?type=rule",
        json={"ruleId": "queue_depth", "updates": {"severity": "urgent"}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid alert rule updates"

    rules = client.get("/api/monitoring/alerts/rules").json()["data"]
    assert [r["severity"] for r in rules if r["id"] == "queue_depth"] == ["high"]


def test_update_channel(client):
    response = client.put(
        "/api/monitoring/alerts?type=channel",
        json={"channelType": "slack", "updates": {"enabled": True}},
    )
    unknown = client.put(
        "/api/monitoring/alerts?type=channel",
        json={"channelType": "pager", "updates": {"enabled": True}},
    )

    assert response.json()["message"] == "Notification channel updated successfully"
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "Notification channel not found"

    channels = client.get("/api/monitoring/alerts/channels").json()["data"]
    assert {c["type"]: c["enabled"] for c in channels} == {"console": True, "slack": True}


def test_invalid_update_type(client):
    response = client.put("/api/monitoring/alerts?type=banana", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid type parameter"
