"""Web API 端点测试"""

from __future__ import annotations

import pytest

from conftest import wait_until
from infragate.core.models import Finding, RunStatus, Severity
from infragate.services.container import set_container
from infragate.web.app import app


@pytest.fixture()
def container(make_container):  # type: ignore[no-untyped-def]
    c = make_container()
    set_container(c)
    return c


@pytest.fixture()
def client(container):  # type: ignore[no-untyped-def]
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def _pending(container) -> list:  # type: ignore[no-untyped-def]
    return container.approvals.list(pending_only=True)


class TestGlobalErrorHandlers:
    def test_health(self, client) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"

    def test_404_returns_json(self, client) -> None:
        resp = client.get("/api/nonexistent")
        assert resp.status_code == 404
        assert "error" in resp.get_json()

    def test_405_returns_json(self, client) -> None:
        resp = client.delete("/api/runs")
        assert resp.status_code == 405
        assert "error" in resp.get_json()


class TestRunsApi:
    def test_invalid_kind(self, client) -> None:
        resp = client.post("/api/runs", json={"kind": "deploy"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_unknown_environment(self, client) -> None:
        resp = client.post("/api/runs", json={"kind": "review", "environments": ["qa"]})
        assert resp.status_code == 400
        assert resp.get_json()["details"] == ["qa"]

    @pytest.mark.parametrize("hours", [0, -1])
    def test_non_positive_approval_timeout(self, client, container, hours: float) -> None:
        resp = client.post(
            "/api/runs", json={"kind": "promote", "approval_timeout_hours": hours},
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"
        assert container.orchestrator.list_runs() == []

    def test_review_run(self, client, container) -> None:
        container.scanner.findings["prod"] = [Finding("aws-s3-public", Severity.CRITICAL)]
        resp = client.post("/api/runs", json={"kind": "review", "change_ref": "pr-9"})
        assert resp.status_code == 202
        run_id = resp.get_json()["run_id"]
        assert container.runs.wait(run_id, timeout=5)

        data = client.get(f"/api/runs/{run_id}").get_json()
        assert data["status"] == "failed"
        assert data["change_ref"] == "pr-9"
        statuses = {e["name"]: e["status"] for e in data["environments"]}
        assert statuses == {"dev": "passed", "prod": "blocked"}

        md = client.get(f"/api/runs/{run_id}?format=markdown")
        assert md.status_code == 200
        assert "## infragate review" in md.get_data(as_text=True)

        listed = client.get("/api/runs").get_json()["runs"]
        assert [r["run_id"] for r in listed] == [run_id]

        history = client.get("/api/runs/history?status=failed").get_json()["history"]
        assert history[0]["run_id"] == run_id

    def test_unsupported_format(self, client, container) -> None:
        run_id = client.post("/api/runs", json={"kind": "review"}).get_json()["run_id"]
        container.runs.wait(run_id, timeout=5)
        assert client.get(f"/api/runs/{run_id}?format=pdf").status_code == 400

    def test_unknown_run(self, client) -> None:
        resp = client.get("/api/runs/nope")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"
        assert client.post("/api/runs/nope/cancel").status_code == 404


class TestApprovalFlow:
    def test_approve_promote(self, client, container) -> None:
        run_id = client.post("/api/runs", json={"kind": "promote"}).get_json()["run_id"]
        assert wait_until(lambda: bool(_pending(container)))

        listed = client.get("/api/approvals?pending=1").get_json()["approvals"]
        assert len(listed) == 1
        record_id = listed[0]["record_id"]
        assert listed[0]["environment"] == "prod"
        assert listed[0]["run_id"] == run_id

        url = f"/api/approvals/{record_id}/decision"
        resp = client.post(url, json={"actor": "mallory", "decision": "approved"})
        assert resp.status_code == 403

        resp = client.post(url, json={"actor": "alice", "decision": "approved", "comment": "ok"})
        assert resp.status_code == 200
        assert resp.get_json()["decision"] == "approved"

        resp = client.post(url, json={"actor": "bob", "decision": "rejected"})
        assert resp.status_code == 409

        assert container.runs.wait(run_id, timeout=5)
        assert container.orchestrator.get(run_id).status is RunStatus.SUCCEEDED
        assert container.engine.applied == ["dev", "prod"]

    def test_decision_requires_fields(self, client) -> None:
        resp = client.post("/api/approvals/x/decision", json={"actor": "alice"})
        assert resp.status_code == 400

    def test_unknown_record(self, client) -> None:
        resp = client.post("/api/approvals/x/decision",
                           json={"actor": "alice", "decision": "approved"})
        assert resp.status_code == 404

    def test_cancel_run(self, client, container) -> None:
        run_id = client.post("/api/runs", json={"kind": "promote"}).get_json()["run_id"]
        assert wait_until(lambda: bool(_pending(container)))

        resp = client.post(f"/api/runs/{run_id}/cancel")
        assert resp.get_json()["cancelled"] is True
        assert container.runs.wait(run_id, timeout=5)

        data = client.get(f"/api/runs/{run_id}").get_json()
        assert data["status"] == "cancelled"
        approvals = client.get(f"/api/approvals?run_id={run_id}").get_json()["approvals"]
        assert approvals[0]["decision"] == "rejected"
        assert approvals[0]["decided_by"] == "infragate"
