import pytest
from httpx import AsyncClient

from medprep_ai.core.database import new_id
from medprep_ai.core.database.entities.adaptive_quiz import AdaptiveQuizSession

pytestmark = pytest.mark.asyncio


async def test_status_requires_authentication(client: AsyncClient):
    response = await client.get("http://localhost/api/rate-limit/status")
    assert response.status_code == 401


async def test_status_of_fresh_user(client: AsyncClient, make_user):
    user = await make_user()

    response = await client.get("http://localhost/api/rate-limit/status", headers={"X-User-Id": user.id})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["rateLimit"]["canGenerate"] is True
    assert data["usage"]["today"] == 0
    assert data["message"] == "Vous pouvez générer un nouveau quiz adaptatif"


async def test_status_during_cooldown(client: AsyncClient, session, make_user):
    user = await make_user()
    session.add(AdaptiveQuizSession(session_id=f"adaptive_{new_id()[:12]}", user_id=user.id))
    await session.commit()

    response = await client.get("http://localhost/api/rate-limit/status", headers={"X-User-Id": user.id})

    data = response.json()["data"]
    assert data["rateLimit"]["canGenerate"] is False
    assert data["rateLimit"]["reason"] == "cooldown_active"
    assert data["message"].startswith("Vous devez attendre")


async def test_usage_stats(client: AsyncClient, session, make_user):
    user = await make_user()
    session.add(AdaptiveQuizSession(session_id=f"adaptive_{new_id()[:12]}", user_id=user.id))
    await session.commit()

    response = await client.get("http://localhost/api/rate-limit/usage-stats", headers={"X-User-Id": user.id})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["today"] == 1
    assert body["data"]["thisMonth"] == 1
