"""Tests for the transient registry server."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from microdeploy.deploy.registry import RegistryServer, SettingsStore

AUTH = ("admin", "admin-password")
URL = "/instances/vm-agent-id/settings"


@pytest.fixture
def server() -> RegistryServer:
    return RegistryServer(*AUTH)


@pytest.fixture
def client(server: RegistryServer) -> TestClient:
    return TestClient(server.create_app())


class TestRegistryEndpoints:
    def test_requires_basic_auth(self, client: TestClient) -> None:
        assert client.get(URL).status_code == 401
        assert client.get(URL, auth=("admin", "wrong")).status_code == 401

    def test_put_then_get_settings(self, client: TestClient, server: RegistryServer) -> None:
        settings = '{"agent_id": "vm-agent-id"}'

        put = client.put(URL, content=settings, auth=AUTH)
        get = client.get(URL, auth=AUTH)

        assert put.status_code == 200
        assert get.status_code == 200
        assert get.json() == {"settings": settings, "status": "ok"}
        assert server.store.get("vm-agent-id") == settings

    def test_missing_settings_is_not_found(self, client: TestClient) -> None:
        assert client.get(URL, auth=AUTH).status_code == 404

    def test_delete_settings(self, client: TestClient) -> None:
        client.put(URL, content="{}", auth=AUTH)

        assert client.delete(URL, auth=AUTH).status_code == 200
        assert client.get(URL, auth=AUTH).status_code == 404


class TestSettingsStore:
    def test_delete_reports_presence(self) -> None:
        store = SettingsStore()
        store.save("id", "{}")

        assert store.delete("id") is True
        assert store.delete("id") is False


class TestRegistryServer:
    def test_stop_without_start_is_noop(self, server: RegistryServer) -> None:
        server.stop()

        assert server.is_running is False
