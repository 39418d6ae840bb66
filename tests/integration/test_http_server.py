"""
Integration tests for the HTTP transport.

Tests cover:
- Entity and relationship routes
- Error code to status mapping
- Cursor pagination over HTTP
"""

import os

import pytest
from fastapi.testclient import TestClient

from catalog.lrm_server.api import ApiSettings, create_app
from catalog.lrm_server.config import ServerConfig, StorageConfig
from catalog.lrm_server.errors import StorageUnavailableError
from catalog.lrm_server.schema import get_registry

ABSENT = "8b9a3f36-5d52-4c1c-9a0e-0b1d2a3c4d5e"


@pytest.fixture
def client(data_dir):
    config = ServerConfig(
        storage=StorageConfig(database_path=os.path.join(data_dir, "catalog.db"), wal_mode=False)
    )
    app = create_app(config, ApiSettings(default_page_size=2, max_page_size=5), get_registry())
    with TestClient(app) as test_client:
        yield test_client


def create(client, kind, **body):
    response = client.post("/api/v1/entities", json={"kind": kind, **body})
    assert response.status_code == 201, response.text
    return response.json()


class TestEntityRoutes:
    """Tests for /entities."""

    def test_create_and_get(self, client):
        person = create(
            client,
            "person",
            notes=["from import"],
            layers={"agent": {"language": ["ja"]}, "person": {"profession": ["mangaka"]}},
        )

        response = client.get(f"/api/v1/entities/{person['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "person"
        assert body["profession"] == ["mangaka"]
        assert body["language"] == ["ja"]
        assert body["notes"] == ["from import"]

    def test_unknown_kind(self, client):
        response = client.post("/api/v1/entities", json={"kind": "novel"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNKNOWN_KIND"

    def test_invalid_attributes(self, client):
        response = client.post("/api/v1/entities", json={"kind": "nomen", "layers": {"nomen": {}}})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "Field 'nomen_string' is required" in error["details"]["errors"]

    def test_integer_overflow(self, client):
        response = client.post(
            "/api/v1/entities", json={"kind": "image", "layers": {"image": {"width": 10**20}}}
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "Field 'width' is out of the 64-bit integer range" in error["details"]["errors"]

    def test_malformed_body(self, client):
        response = client.post("/api/v1/entities", json={"layers": {}})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_not_found(self, client):
        response = client.get(f"/api/v1/entities/{ABSENT}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_patch(self, client):
        work = create(client, "work", layers={"work": {"category": ["manga"]}})
        response = client.patch(
            f"/api/v1/entities/{work['id']}", json={"layers": {"work": {"category": ["anime"]}}}
        )
        assert response.status_code == 200
        assert response.json()["category"] == ["anime"]
        assert response.json()["updated_at"] is not None

    def test_delete(self, client):
        work = create(client, "work")
        assert client.delete(f"/api/v1/entities/{work['id']}").status_code == 204
        assert client.get(f"/api/v1/entities/{work['id']}").status_code == 404
        assert client.delete(f"/api/v1/entities/{work['id']}").status_code == 404

    def test_list_with_cursor(self, client):
        created = {create(client, "tag")["id"] for _ in range(3)}

        first = client.get("/api/v1/entities", params={"kind": "tag"}).json()
        assert len(first["items"]) == 2
        assert first["next_cursor"]

        second = client.get(
            "/api/v1/entities", params={"kind": "tag", "cursor": first["next_cursor"]}
        ).json()
        assert second["next_cursor"] is None
        assert {e["id"] for e in first["items"] + second["items"]} == created

    def test_list_bad_cursor(self, client):
        response = client.get("/api/v1/entities", params={"cursor": "%%%"})
        assert response.status_code == 400

    def test_storage_unavailable(self, client):
        async def unavailable(entity_id):
            raise StorageUnavailableError("database is locked", operation="read")

        client.app.state.entities.get_entity = unavailable

        response = client.get(f"/api/v1/entities/{ABSENT}")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["error"]["code"] == "STORAGE_UNAVAILABLE"


class TestRelationshipRoutes:
    """Tests for /relationships and graph queries."""

    def test_interval_overflow(self, client):
        work = create(client, "work")
        author = create(client, "person")
        response = client.post(
            "/api/v1/relationships",
            json={
                "source_id": work["id"],
                "target_id": author["id"],
                "rel_type": "MP_R5",
                "start_date": 2**70,
            },
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert client.get(f"/api/v1/entities/{work['id']}/relationships").json()["items"] == []

    def test_create_and_query(self, client):
        work = create(client, "work")
        author = create(client, "person")

        response = client.post(
            "/api/v1/relationships",
            json={"source_id": work["id"], "target_id": author["id"], "rel_type": "MP_R5"},
        )
        assert response.status_code == 201
        edge = response.json()
        assert edge["rel_type"] == "MP_R5"

        works = client.get(f"/api/v1/agents/{author['id']}/works").json()
        assert [w["id"] for w in works["items"]] == [work["id"]]

        related = client.get(
            f"/api/v1/entities/{author['id']}/related",
            params={"rel_type": "MP_R5", "direction": "inbound"},
        ).json()
        assert [w["id"] for w in related["items"]] == [work["id"]]

        edges = client.get(f"/api/v1/entities/{work['id']}/relationships").json()
        assert [e["id"] for e in edges["items"]] == [edge["id"]]

        assert client.get(f"/api/v1/relationships/{edge['id']}").json() == edge

    def test_type_mismatch(self, client):
        work = create(client, "work")
        author = create(client, "person")
        response = client.post(
            "/api/v1/relationships",
            json={"source_id": author["id"], "target_id": work["id"], "rel_type": "MP_R5"},
        )
        assert response.status_code == 422
        assert response.json()["error"]["details"]["expected"] == ["work", "agent"]

    def test_endpoint_not_found(self, client):
        work = create(client, "work")
        response = client.post(
            "/api/v1/relationships",
            json={"source_id": work["id"], "target_id": ABSENT, "rel_type": "MP_R5"},
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENDPOINT_NOT_FOUND"

    def test_delete_relationship(self, client):
        work = create(client, "work")
        part = create(client, "work")
        edge = client.post(
            "/api/v1/relationships",
            json={"source_id": work["id"], "target_id": part["id"], "rel_type": "MP_R18"},
        ).json()

        assert client.delete(f"/api/v1/relationships/{edge['id']}").status_code == 204
        assert client.get(f"/api/v1/relationships/{edge['id']}").status_code == 404

    def test_works_of_a_work(self, client):
        work = create(client, "work")
        response = client.get(f"/api/v1/agents/{work['id']}/works")
        assert response.status_code == 422


class TestServiceRoutes:
    """Tests for /registry and /health."""

    def test_registry(self, client):
        body = client.get("/api/v1/registry").json()
        assert body["fingerprint"].startswith("sha256:")
        assert len(body["relationship_types"]) == 40

    def test_health(self, client):
        create(client, "work")
        body = client.get("/api/v1/health").json()
        assert body["status"] == "healthy"
        assert body["resources"] == 1
        assert body["relationships"] == 0
