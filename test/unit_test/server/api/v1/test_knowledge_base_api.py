import pytest
from httpx import AsyncClient

from medprep_ai.server.core.config import settings

pytestmark = pytest.mark.asyncio

BASE = "http://localhost/api/knowledge-base"


@pytest.fixture(autouse=True)
def upload_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))
    monkeypatch.setattr(settings, "upload_max_size_mb", 1)


async def test_upload_requires_authentication(client: AsyncClient):
    response = await client.post(f"{BASE}/upload", files={"document": ("notes.txt", b"abc", "text/plain")})
    assert response.status_code == 401


async def test_upload_without_file(client: AsyncClient, make_user):
    user = await make_user()
    response = await client.post(f"{BASE}/upload", headers={"X-User-Id": user.id})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": 'Aucun fichier fourni. Utilisez le champ "document".'}


async def test_upload_text_document_then_poll_status(client: AsyncClient, make_user, tmp_path):
    user = await make_user(role="teacher")
    response = await client.post(
        f"{BASE}/upload",
        files={"document": ("notes.txt", "Système nerveux central".encode(), "text/plain")},
        headers={"X-User-Id": user.id},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Document reçu, traitement en cours"
    assert body["data"]["processingStatus"] == "completed"
    assert len(list(tmp_path.iterdir())) == 1

    status_response = await client.get(f"http://localhost{body['data']['statusEndpoint']}", headers={"X-User-Id": user.id})
    assert status_response.status_code == 200
    data = status_response.json()["data"]
    assert data["progress"] == 100
    assert data["title"] == "notes"


async def test_upload_unsupported_format(client: AsyncClient, make_user):
    user = await make_user()
    response = await client.post(
        f"{BASE}/upload",
        files={"document": ("schema.png", b"\x89PNG", "image/png")},
        headers={"X-User-Id": user.id},
    )

    assert response.status_code == 400
    assert response.json()["error"].startswith("Type de fichier non supporté")


async def test_upload_too_large(client: AsyncClient, make_user):
    user = await make_user()
    response = await client.post(
        f"{BASE}/upload",
        files={"document": ("big.pdf", b"x" * (1024 * 1024 + 10), "application/pdf")},
        headers={"X-User-Id": user.id},
    )

    assert response.status_code == 413
    assert response.json()["success"] is False


async def test_status_of_unknown_document(client: AsyncClient, make_user):
    user = await make_user()
    response = await client.get(f"{BASE}/missing/status", headers={"X-User-Id": user.id})

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Document introuvable"}
