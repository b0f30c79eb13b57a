"""
API route integration tests using FastAPI TestClient.
Tests the full HTTP request/response cycle against a local SQLite database.
Run: pytest tests/test_api_routes.py -v
"""
import uuid

import pytest
from fastapi.testclient import TestClient

from stage_service.auth.authorizer import Resource, ResourceType, Role
from stage_service.stages.models import Stage

ADMIN = {"X-Operator": "admin"}
OUTSIDER = {"X-Operator": "mallory"}
VALID_UUID = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"


@pytest.fixture(scope="module")
def client():
    """Create a TestClient for the FastAPI app."""
    from stage_service.api.server import app
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def seeded(client):
    """Insert a fresh stage under a unique environment; returns its base URL and record."""
    env_name = f"env-{uuid.uuid4().hex[:8]}"
    stage = client.portal.call(
        client.app.state.stage_store.insert,
        Stage(env_name=env_name, stage_name="prod", description="seeded"),
    )
    return f"/v1/envs/{env_name}/prod", stage


# ══════════════════════════════════════════════════════════════════
# SYSTEM / HEALTH
# ══════════════════════════════════════════════════════════════════


class TestSystemRoutes:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok", "database": "ok"}

    def test_info(self, client):
        r = client.get("/info")
        assert r.status_code == 200
        data = r.json()
        assert data["service"] == "Stage Service"
        assert data["authorizer"] == "role_based"
        assert data["change_feed_configured"] is False

    def test_openapi_json(self, client):
        r = client.get("/openapi.json")
        assert r.status_code == 200
        schema = r.json()
        assert schema["info"]["title"] == "Stage Service"
        assert "/v1/envs/{env_name}/{stage_name}/actions" in schema["paths"]

    def test_docs_page(self, client):
        assert client.get("/docs").status_code == 200


# ══════════════════════════════════════════════════════════════════
# GET / PUT / DELETE
# ══════════════════════════════════════════════════════════════════


class TestStageRoutes:

    def test_get(self, client, seeded):
        url, stage = seeded
        r = client.get(url, headers=ADMIN)
        assert r.status_code == 200
        data = r.json()
        assert data["env_id"] == stage.env_id
        assert data["description"] == "seeded"
        assert data["env_state"] == "ENABLED"

    def test_get_missing(self, client):
        r = client.get("/v1/envs/nope/nope", headers=ADMIN)
        assert r.status_code == 404
        assert r.json()["detail"] == "Environment nope/nope does not exist."

    def test_invalid_name(self, client):
        r = client.get("/v1/envs/bad.name/prod", headers=ADMIN)
        assert r.status_code == 422

    def test_get_uses_dev_operator_without_header(self, client, seeded):
        url, _ = seeded
        assert client.get(url).status_code == 200

    def test_update(self, client, seeded):
        url, stage = seeded
        r = client.put(url, json={"description": "updated", "max_parallel": 3}, headers=ADMIN)
        assert r.status_code == 200
        data = r.json()
        assert data["audit_complete"] is True
        assert data["audit_errors"] == []
        assert data["stage"]["description"] == "updated"
        assert data["stage"]["last_operator"] == "admin"
        assert data["stage"]["env_id"] == stage.env_id
        assert client.get(url, headers=ADMIN).json()["max_parallel"] == 3

    def test_update_invalid_payload(self, client, seeded):
        url, _ = seeded
        r = client.put(url, json={"max_parallel_pct": 500}, headers=ADMIN)
        assert r.status_code == 400
        assert "max_parallel_pct" in r.json()["detail"]

    def test_update_stage_type_locked(self, client, seeded):
        url, _ = seeded
        assert client.put(url, json={"stage_type": "PRODUCTION"}, headers=ADMIN).status_code == 200
        r = client.put(url, json={"stage_type": "CANARY"}, headers=ADMIN)
        assert r.status_code == 400
        assert r.json()["detail"] == "Modification of stage type is not allowed!"

    def test_update_forbidden(self, client, seeded):
        url, _ = seeded
        r = client.put(url, json={"description": "hacked"}, headers=OUTSIDER)
        assert r.status_code == 403
        assert client.get(url, headers=ADMIN).json()["description"] == "seeded"

    def test_env_operator_may_update(self, client, seeded):
        url, stage = seeded
        client.app.state.authorizer.grant(
            "olga", Resource(name=stage.env_name, type=ResourceType.ENV), Role.OPERATOR,
        )
        r = client.put(url, json={"description": "by olga"}, headers={"X-Operator": "olga"})
        assert r.status_code == 200
        assert r.json()["stage"]["last_operator"] == "olga"

    def test_delete(self, client, seeded):
        url, _ = seeded
        r = client.delete(url, headers=ADMIN)
        assert r.status_code == 204
        assert client.get(url, headers=ADMIN).status_code == 404
        assert client.delete(url, headers=ADMIN).status_code == 404

    def test_delete_forbidden(self, client, seeded):
        url, _ = seeded
        assert client.delete(url, headers=OUTSIDER).status_code == 403
        assert client.get(url, headers=ADMIN).status_code == 200


# ══════════════════════════════════════════════════════════════════
# EXTERNAL ID / SOX FLAG
# ══════════════════════════════════════════════════════════════════


class TestFieldRoutes:

    def test_set_external_id(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/external_id", content=VALID_UUID, headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["stage"]["external_id"] == VALID_UUID
        assert client.get(url, headers=ADMIN).json()["external_id"] == VALID_UUID

    def test_set_external_id_json_string(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/external_id", content=f'"{VALID_UUID.upper()}"',
                        headers={**ADMIN, "Content-Type": "application/json"})
        assert r.status_code == 200
        assert r.json()["stage"]["external_id"] == VALID_UUID

    def test_set_invalid_external_id(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/external_id", content="not-a-uuid", headers=ADMIN)
        assert r.status_code == 400
        assert client.get(url, headers=ADMIN).json()["external_id"] is None

    def test_set_stage_is_sox(self, client, seeded):
        url, _ = seeded
        r = client.patch(f"{url}/stage_is_sox", content="TRUE", headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["stage"]["is_sox"] is True
        r = client.patch(f"{url}/stage_is_sox", content="false\n", headers=ADMIN)
        assert r.json()["stage"]["is_sox"] is False

    def test_set_stage_is_sox_invalid(self, client, seeded):
        url, _ = seeded
        r = client.patch(f"{url}/stage_is_sox", content="maybe", headers=ADMIN)
        assert r.status_code == 400
        assert "invalid Boolean" in r.json()["detail"]

    def test_non_utf8_body_rejected(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/external_id", content=b"\xff\xfe", headers=ADMIN)
        assert r.status_code == 400
        assert "UTF-8" in r.json()["detail"]
        r = client.patch(f"{url}/stage_is_sox", content=b"\xff\xfe", headers=ADMIN)
        assert r.status_code == 400
        stage = client.get(url, headers=ADMIN).json()
        assert stage["external_id"] is None
        assert stage["is_sox"] is False

    def test_field_routes_forbidden(self, client, seeded):
        url, _ = seeded
        assert client.post(f"{url}/external_id", content=VALID_UUID, headers=OUTSIDER).status_code == 403
        assert client.patch(f"{url}/stage_is_sox", content="true", headers=OUTSIDER).status_code == 403


# ══════════════════════════════════════════════════════════════════
# ACTIONS
# ══════════════════════════════════════════════════════════════════


class TestActionRoutes:

    def test_disable_then_enable(self, client, seeded):
        url, stage = seeded
        r = client.post(f"{url}/actions", params={"actionType": "DISABLE", "description": "maint"},
                        headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["stage"]["env_state"] == "DISABLED"

        r = client.post(f"{url}/actions", params={"actionType": "ENABLE", "description": "done"},
                        headers=ADMIN)
        assert r.json()["stage"]["env_state"] == "ENABLED"

        tags = client.portal.call(client.app.state.tag_handler.list_tags, stage.env_id)
        assert sorted(t.value.value for t in tags) == ["DISABLE_ENV", "ENABLE_ENV"]

    def test_unknown_action(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/actions", params={"actionType": "RESTART", "description": "x"},
                        headers=ADMIN)
        assert r.status_code == 400
        assert "No action found" in r.json()["detail"]

    def test_missing_description(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/actions", params={"actionType": "ENABLE", "description": ""},
                        headers=ADMIN)
        assert r.status_code == 422
        r = client.post(f"{url}/actions", params={"actionType": "ENABLE"}, headers=ADMIN)
        assert r.status_code == 422

    def test_action_forbidden(self, client, seeded):
        url, _ = seeded
        r = client.post(f"{url}/actions", params={"actionType": "DISABLE", "description": "x"},
                        headers=OUTSIDER)
        assert r.status_code == 403
        assert client.get(url, headers=ADMIN).json()["env_state"] == "ENABLED"

    def test_action_on_missing_stage(self, client):
        r = client.post("/v1/envs/nope/nope/actions",
                        params={"actionType": "ENABLE", "description": "x"}, headers=ADMIN)
        assert r.status_code == 404
