"""Shared fixtures: a fresh lobby registry and app per test."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gridxo import server
from gridxo.lobby import LobbyRegistry


@pytest.fixture()
def registry() -> LobbyRegistry:
    return LobbyRegistry()


@pytest.fixture()
def client(registry, monkeypatch):
    monkeypatch.setattr(server, "AI_THINK_DELAY", (0.0, 0.0))
    # Entering the client shares one event loop between all its sockets.
    with TestClient(server.create_app(registry)) as test_client:
        yield test_client
