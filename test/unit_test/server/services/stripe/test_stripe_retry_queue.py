import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from medprep_ai.core.database.entities.subscriptions import Prospect, Subscription, WebhookRetryQueue
from medprep_ai.core.database.entities.users import User
from medprep_ai.server.core.config import StripeSettings
from medprep_ai.server.services.stripe import StripeWebhookService, process_webhook_retry_queue, run_retry_queue_loop
from medprep_ai.server.services.stripe.retry_queue import next_retry_delay

NOW = datetime(2026, 3, 10, 12, 0)


@pytest.fixture
def service(session) -> StripeWebhookService:
    config = StripeSettings(
        secret_key="sk_test_123",
        webhook_secret="whsec_abc",
        price_id_monthly="price_monthly",
        price_id_yearly="price_yearly",
    )
    return StripeWebhookService(session, config)


async def queue(session, event_id, payload, retry_count=0, next_retry_at=NOW - timedelta(minutes=1)) -> str:
    entry = WebhookRetryQueue(
        event_id=event_id,
        event_type=payload.get("type", "subscription_sync.missing_user"),
        payload=payload,
        retry_count=retry_count,
        max_retries=3,
        next_retry_at=next_retry_at,
    )
    session.add(entry)
    await session.commit()
    return entry.id


async def stored(session, entry_id) -> WebhookRetryQueue:
    entry = await session.get(WebhookRetryQueue, entry_id)
    await session.refresh(entry)
    return entry


@pytest.mark.parametrize("retry_count, minutes", [(0, 5), (1, 5), (2, 10), (3, 20)])
def test_next_retry_delay(retry_count, minutes):
    assert next_retry_delay(retry_count) == timedelta(minutes=minutes)


class TestProcessWebhookRetryQueue:
    async def test_empty_queue(self, session, service):
        stats = await process_webhook_retry_queue(session, service, NOW)
        assert stats == {"processed": 0, "succeeded": 0, "failed": 0, "rescheduled": 0}

    async def test_replayed_event_succeeds(self, session, service):
        prospect = Prospect(email="lea@medprep.test", stripe_customer_id="cus_123")
        session.add(prospect)
        await session.commit()
        prospect_id = prospect.id
        entry_id = await queue(
            session,
            "evt_1",
            {"id": "evt_1", "type": "checkout.session.expired", "data": {"object": {"customer": "cus_123"}}},
        )

        stats = await process_webhook_retry_queue(session, service, NOW)

        assert stats == {"processed": 1, "succeeded": 1, "failed": 0, "rescheduled": 0}
        entry = await stored(session, entry_id)
        assert entry.status == "success"
        assert entry.last_error is None
        assert (await session.get(Prospect, prospect_id)).status == "abandoned"

    async def test_failure_is_rescheduled_with_backoff(self, session, service):
        entry_id = await queue(
            session,
            "evt_2",
            {"id": "evt_2", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_missing"}}},
            retry_count=1,
        )

        stats = await process_webhook_retry_queue(session, service, NOW)

        assert stats["rescheduled"] == 1
        entry = await stored(session, entry_id)
        assert entry.status == "pending"
        assert entry.retry_count == 2
        assert entry.last_error == "Subscription not found: sub_missing"
        assert entry.next_retry_at == NOW + timedelta(minutes=10)

    async def test_last_failure_marks_entry_failed(self, session, service):
        entry_id = await queue(
            session,
            "evt_3",
            {"id": "evt_3", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_missing"}}},
            retry_count=2,
        )

        stats = await process_webhook_retry_queue(session, service, NOW)

        assert stats["failed"] == 1
        entry = await stored(session, entry_id)
        assert entry.status == "failed"
        assert entry.retry_count == 3

    async def test_replay_exception_counts_as_failure(self, session, service):
        entry_id = await queue(session, "evt_4", {"id": "evt_4", "type": "customer.created"})
        service.process_event = AsyncMock(side_effect=RuntimeError("database is locked"))

        stats = await process_webhook_retry_queue(session, service, NOW)

        assert stats["rescheduled"] == 1
        assert (await stored(session, entry_id)).last_error == "database is locked"

    async def test_subscription_sync_replay(self, session, service, make_user):
        user = await make_user()
        user_id = user.id
        session.add(Subscription(subscription_id="sub_123", user_id=user_id, status="active"))
        await session.commit()
        entry_id = await queue(
            session,
            "subscription-sync-missing-user-sub_123",
            {"subscriptionId": "sub_123", "userId": user_id, "source": "syncUserSubscription"},
        )

        stats = await process_webhook_retry_queue(session, service, NOW)

        assert stats["succeeded"] == 1
        assert (await stored(session, entry_id)).status == "success"
        assert (await session.get(User, user_id)).subscription_status == "active"

    async def test_entries_not_due_are_left_alone(self, session, service):
        entry_id = await queue(
            session, "evt_5", {"id": "evt_5", "type": "customer.created"}, next_retry_at=NOW + timedelta(minutes=1)
        )

        stats = await process_webhook_retry_queue(session, service, NOW)

        assert stats["processed"] == 0
        assert (await stored(session, entry_id)).status == "pending"


class TestRetryQueueLoop:
    @staticmethod
    def _factory():
        @asynccontextmanager
        async def factory():
            yield "db-session"

        return factory

    async def test_loop_runs_until_cancelled(self):
        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
        process = AsyncMock(return_value={})

        with patch("medprep_ai.server.services.stripe.retry_queue.asyncio.sleep", sleep), patch(
            "medprep_ai.server.services.stripe.retry_queue.process_webhook_retry_queue", process
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_retry_queue_loop(self._factory(), 60)

        sleep.assert_awaited_with(60)
        process.assert_awaited_once_with("db-session")

    async def test_loop_survives_failed_run(self):
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])
        process = AsyncMock(side_effect=[RuntimeError("db down"), {}])

        with patch("medprep_ai.server.services.stripe.retry_queue.asyncio.sleep", sleep), patch(
            "medprep_ai.server.services.stripe.retry_queue.process_webhook_retry_queue", process
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_retry_queue_loop(self._factory(), 30)

        assert process.await_count == 2
