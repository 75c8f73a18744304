"""Integration tests for the governor HTTP API."""
from datetime import timedelta

from wa_governor.db.models.warmup import WarmupState
from wa_governor.services.adapters.base import MessageStats

API = "/api/v1/governor"

FAILING = MessageStats(sent=100, delivered=55, failed=40, read=20, blocked=2,
                       unique_templates=1, hourly_counts=[10] * 10)


class TestService:
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_config(self, client):
        response = client.get(f"{API}/config")
        assert response.status_code == 200
        data = response.json()
        assert data["scoring"]["weight_delivery"] == 0.4
        assert data["actions"]["hysteresis_margin"] == 5
        assert data["warmup"]["relapse_limit"] == 3


class TestRecalculateEndpoint:
    """Tests for POST /governor/recalculate."""

    def test_single_connection(self, client, make_connection):
        cid = make_connection(state=WarmupState.STABLE)

        response = client.post(f"{API}/recalculate", json={"connection_id": cid})

        assert response.status_code == 200
        data = response.json()
        assert data["connection_id"] == cid
        assert data["score"] == 100
        assert data["status"] == "excellent"
        assert data["reconnect_blocked"] is False

    def test_batch(self, client, telemetry, make_connection):
        make_connection(state=WarmupState.STABLE)
        failing = make_connection(state=WarmupState.STABLE)
        telemetry.set_stats(failing, FAILING)

        response = client.post(f"{API}/recalculate", json={"window": "7d"}, headers={"X-Actor-Id": "ops-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["window"] == "7d"
        assert data["total"] == 2
        assert data["succeeded"] == 2
        assert data["run_id"] >= 1

        runs = client.get(f"{API}/runs").json()
        assert runs["runs"][0]["job_name"] == "health_recalculation"
        assert runs["runs"][0]["triggered_by"] == "ops-1"
        assert runs["runs"][0]["counters"]["total"] == 2
        assert runs["scheduler"]["running"] is False

    def test_queued(self, client, make_connection):
        cid = make_connection(state=WarmupState.STABLE)

        response = client.post(f"{API}/recalculate", json={"connection_id": cid, "async": True})

        assert response.status_code == 200
        assert response.json() == {"queued": True, "connection_id": cid, "window": "24h"}
        detail = client.get(f"{API}/connections/{cid}").json()
        assert detail["health"]["score"] == 100

    def test_unknown_connection(self, client):
        response = client.post(f"{API}/recalculate", json={"connection_id": 404})
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "connection_not_found",
            "message": "Connection 404 not found",
            "connection_id": 404,
        }

    def test_insufficient_data(self, client, telemetry, make_connection):
        cid = make_connection(state=WarmupState.STABLE)
        telemetry.set_stats(cid, MessageStats())

        response = client.post(f"{API}/recalculate", json={"connection_id": cid})

        assert response.status_code == 422
        assert response.json()["error"] == "insufficient_data"

    def test_unknown_window(self, client, make_connection):
        cid = make_connection()
        response = client.post(f"{API}/recalculate", json={"connection_id": cid, "window": "90d"})
        assert response.status_code == 422


class TestReadEndpoints:
    """Tests for summary, detail, trend and history endpoints."""

    def test_summary(self, client, governor, telemetry, make_connection):
        cid = make_connection(state=WarmupState.STABLE)
        telemetry.set_stats(cid, FAILING)
        governor.recalculate(cid)

        response = client.get(f"{API}/summary")

        assert response.status_code == 200
        data = response.json()
        assert data["total_connections"] == 1
        assert data["by_status"]["critical"] == 1
        assert data["needs_attention"][0]["connection_id"] == cid

    def test_connection_detail(self, client, governor, make_connection):
        cid = make_connection(state=WarmupState.STABLE, plan_daily_limit=400)
        governor.recalculate(cid)

        data = client.get(f"{API}/connections/{cid}").json()

        assert data["warmup"]["state"] == "stable"
        assert data["warmup"]["daily_limit"] == 400
        assert data["actions"] == {
            "reduce_batch": False, "add_delay": False, "pause_campaign": False,
            "pause_warmup": False, "block_reconnect": False,
        }
        assert data["open_blocks"] == []

    def test_connection_detail_not_found(self, client):
        response = client.get(f"{API}/connections/12345")
        assert response.status_code == 404
        assert response.json()["error"] == "connection_not_found"

    def test_trend(self, client, governor, make_connection, clock):
        cid = make_connection(state=WarmupState.STABLE)
        governor.recalculate(cid)
        clock.advance(hours=1)
        governor.recalculate(cid)

        data = client.get(f"{API}/connections/{cid}/trend", params={"days": 90}).json()

        assert data["days"] == 30
        assert data["direction"] == "flat"
        assert len(data["points"]) == 2

    def test_history(self, client, make_connection, actor_headers):
        cid = make_connection(state=WarmupState.STABLE)
        client.post(f"{API}/connections/{cid}/force-cooldown",
                    json={"hours": 6, "reason": "Audit"}, headers=actor_headers)

        data = client.get(f"{API}/connections/{cid}/history/limits", params={"page_size": 1}).json()

        assert data["kind"] == "limits"
        assert data["total"] == 2
        assert data["pages"] == 2
        assert data["items"][0]["reason"] == "cooldown_start"

    def test_history_unknown_kind(self, client, make_connection):
        cid = make_connection()
        response = client.get(f"{API}/connections/{cid}/history/alerts")
        assert response.status_code == 422


class TestOwnerEndpoints:
    """Tests for owner override endpoints."""

    def test_force_cooldown(self, client, make_connection, actor_headers, clock):
        cid = make_connection(state=WarmupState.WARMING, age_days=5)

        response = client.post(f"{API}/connections/{cid}/force-cooldown",
                               json={"hours": 12, "reason": "Template review"}, headers=actor_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "cooldown"
        assert data["previous_state"] == "warming"
        assert data["force_cooldown"] is True
        assert data["daily_limit"] == 0
        assert data["cooldown_until"] == (clock.now + timedelta(hours=12)).isoformat()

        states = client.get(f"{API}/connections/{cid}/history/states").json()
        assert states["items"][0]["actor_id"] == "owner-42"

    def test_force_cooldown_out_of_bounds(self, client, make_connection, actor_headers):
        cid = make_connection(state=WarmupState.STABLE)

        response = client.post(f"{API}/connections/{cid}/force-cooldown",
                               json={"hours": 500, "reason": "Too long"}, headers=actor_headers)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "invalid_parameter"
        assert data["actor_id"] == "owner-42"

    def test_anonymous_actor(self, client, make_connection):
        cid = make_connection(state=WarmupState.STABLE)
        client.post(f"{API}/connections/{cid}/force-cooldown", json={"hours": 2, "reason": "No header"})

        states = client.get(f"{API}/connections/{cid}/history/states").json()
        assert states["items"][0]["actor_id"] == "anonymous"

    def test_resume_score_gate(self, client, make_connection, make_health, actor_headers):
        cid = make_connection(state=WarmupState.COOLDOWN)
        make_health(cid, 42.5)

        response = client.post(f"{API}/connections/{cid}/resume", headers=actor_headers)

        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "score_too_low"
        assert data["score"] == 42.5
        assert data["required_score"] == 70

        forced = client.post(f"{API}/connections/{cid}/resume", json={"force": True}, headers=actor_headers)
        assert forced.status_code == 200
        assert forced.json()["state"] == "warming"

    def test_resume_not_restricted(self, client, make_connection, make_health, actor_headers):
        cid = make_connection(state=WarmupState.STABLE)
        make_health(cid, 90.0)

        response = client.post(f"{API}/connections/{cid}/resume", json={}, headers=actor_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    def test_reset_and_force_reset(self, client, governor, telemetry, make_connection, actor_headers):
        cid = make_connection(state=WarmupState.STABLE)
        telemetry.set_stats(cid, FAILING)
        governor.recalculate(cid)

        refused = client.post(f"{API}/connections/{cid}/reset-actions", headers=actor_headers)
        assert refused.status_code == 409
        assert refused.json()["error"] == "score_too_low"

        forced = client.post(f"{API}/connections/{cid}/force-reset-actions", headers=actor_headers)
        assert forced.status_code == 200
        data = forced.json()
        assert data["forced"] is True
        assert "block_reconnect" in data["cleared"]
        assert data["warning"]

        detail = client.get(f"{API}/connections/{cid}").json()
        assert not any(detail["actions"].values())

    def test_busy_connection(self, client, governor, make_connection, actor_headers):
        cid = make_connection(state=WarmupState.STABLE)
        with governor.locks.hold(cid):
            response = client.post(f"{API}/connections/{cid}/force-cooldown",
                                   json={"hours": 2, "reason": "Busy"}, headers=actor_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "connection_busy"


class TestProviderEventEndpoints:
    """Tests for webhook event and send-capacity endpoints."""

    def test_blocked_event(self, client, make_connection):
        cid = make_connection(state=WarmupState.STABLE)

        response = client.post(f"{API}/connections/{cid}/events/blocked",
                               json={"severity": "medium", "reason": "Quality rating dropped"})

        assert response.status_code == 200
        data = response.json()
        assert data["transitioned"] is True
        assert data["state"] == "cooldown"
        assert data["cooldown_reason"] == "Quality rating dropped"

        states = client.get(f"{API}/connections/{cid}/history/states").json()
        assert states["items"][0]["trigger_type"] == "webhook_block"

    def test_blocked_event_unknown_severity(self, client, make_connection):
        cid = make_connection(state=WarmupState.STABLE)
        response = client.post(f"{API}/connections/{cid}/events/blocked", json={"severity": "severe"})
        assert response.status_code == 422

    def test_high_failure_event(self, client, make_connection):
        cid = make_connection(state=WarmupState.STABLE)

        low = client.post(f"{API}/connections/{cid}/events/high-failure", json={"failure_rate": 5})
        assert low.json()["transitioned"] is False

        high = client.post(f"{API}/connections/{cid}/events/high-failure", json={"failure_rate": 22.5})
        assert high.status_code == 200
        assert high.json()["state"] == "cooldown"

    def test_send_capacity(self, client, governor, make_connection):
        cid = make_connection(state=WarmupState.STABLE, plan_daily_limit=200)
        governor.record_send(cid, 20)

        response = client.get(f"{API}/connections/{cid}/send-capacity", params={"count": 5})

        assert response.status_code == 200
        assert response.json() == {
            "connection_id": cid,
            "state": "stable",
            "can_send": False,
            "errors": ["Hourly limit reached, 0 messages left this hour"],
            "remaining_today": 180,
            "remaining_hour": 0,
            "wait_seconds": 3600,
        }

    def test_send_capacity_unknown_connection(self, client):
        response = client.get(f"{API}/connections/4040/send-capacity")
        assert response.status_code == 404
