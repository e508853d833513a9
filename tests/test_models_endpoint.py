from __future__ import annotations

from pathlib import Path
from typing import Any

from gemini_pool.errors import UpstreamError
from tests.client_test_utils import (
    FakeGemini,
    admin_headers,
    build_test_client,
    create_caller_key,
)

UPSTREAM_MODELS = {
    "models": [
        {
            "name": "models/gemini-2.0-flash",
            "supportedGenerationMethods": ["generateContent", "countTokens"],
        },
        {
            "name": "models/gemini-embedding-001",
            "supportedGenerationMethods": ["embedContent"],
        },
        {
            "name": "models/embedding-gecko-001",
            "supportedGenerationMethods": ["generateContent"],
        },
    ]
}


def test_v1_models_requires_caller_key(monkeypatch: Any, tmp_path: Path) -> None:
    fake = FakeGemini(models=UPSTREAM_MODELS).install(monkeypatch)
    with build_test_client(monkeypatch, tmp_path) as client:
        response = client.get("/v1/models")

    assert response.status_code == 400
    assert fake.calls == []


def test_v1_models_lists_chat_models_only(monkeypatch: Any, tmp_path: Path) -> None:
    fake = FakeGemini(models=UPSTREAM_MODELS).install(monkeypatch)
    with build_test_client(monkeypatch, tmp_path) as client:
        created = create_caller_key(client, admin_headers(client))
        response = client.get(
            "/v1/models", headers={"Authorization": f"Bearer {created['api_key']}"}
        )

    assert response.status_code == 200
    assert response.json() == {
        "object": "list",
        "data": [
            {
                "id": "gemini-2.0-flash",
                "object": "model",
                "created": 1,
                "owned_by": "google",
            }
        ],
    }
    assert fake.calls == [{"api_key": "gem-key-1", "operation": "list_models"}]


def test_v1_models_upstream_failure_is_500(monkeypatch: Any, tmp_path: Path) -> None:
    FakeGemini(error=UpstreamError("Upstream Gemini API error: 500", status=500)).install(
        monkeypatch
    )
    with build_test_client(monkeypatch, tmp_path) as client:
        created = create_caller_key(client, admin_headers(client))
        response = client.get(
            "/v1/models", headers={"Authorization": f"Bearer {created['api_key']}"}
        )

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_root_and_health_are_public(monkeypatch: Any, tmp_path: Path) -> None:
    with build_test_client(monkeypatch, tmp_path) as client:
        root = client.get("/")
        health = client.get("/health")

    assert root.status_code == 200
    paths = [endpoint["path"] for endpoint in root.json()["endpoints"]]
    assert paths == ["/", "/v1/chat/completions", "/v1/models"]
    assert health.json() == {"status": "ok"}
