"""Tests for NotificationDispatcher retry policy and worker queue."""

from unittest.mock import AsyncMock

import pytest

from smartagri.alerts.dispatcher import NotificationConfig, NotificationDispatcher
from smartagri.alerts.schemas import Alert, AlertSubscription
from smartagri.alerts.senders import NotificationSender
from tests.conftest import T0, ManualClock


class FakeSender(NotificationSender):
    """Sender whose channels are AsyncMocks returning True by default."""

    def __init__(self) -> None:
        self.email = AsyncMock(return_value=True)
        self.sms = AsyncMock(return_value=True)
        self.push = AsyncMock(return_value=True)
        self.in_app = AsyncMock(return_value=True)

    async def send_email(self, address, alert):
        return await self.email(address, alert)

    async def send_sms(self, phone_number, alert):
        return await self.sms(phone_number, alert)

    async def send_push(self, user_id, alert):
        return await self.push(user_id, alert)

    async def send_in_app(self, user_id, alert):
        return await self.in_app(user_id, alert)


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def auto_clock():
    return ManualClock(autoadvance=True)


@pytest.fixture
def dispatcher(sender, auto_clock):
    return NotificationDispatcher(
        sender,
        config=NotificationConfig(retry_max_attempts=3, retry_delay_seconds=5.0, worker_count=2),
        clock=auto_clock,
    )


@pytest.fixture
def alert():
    return Alert(
        id=11,
        alert_type="IRRIGATION",
        severity="MEDIUM",
        title="Soil moisture low",
        message="Soil moisture below 20%",
        parcel_id=2,
        alert_time=T0,
    )


def _sub(method="PUSH", **kwargs) -> AlertSubscription:
    return AlertSubscription(
        id=kwargs.pop("id", 1),
        user_id=kwargs.pop("user_id", "farmer-1"),
        notification_method=method,
        **kwargs,
    )


class TestDeliver:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, dispatcher, sender, alert, auto_clock):
        result = await dispatcher.deliver(_sub("PUSH"), alert)

        assert result.success is True
        assert result.attempts == 1
        assert result.delivered_channels == ["push"]
        assert result.error is None
        sender.push.assert_awaited_once_with("farmer-1", alert)
        assert auto_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, dispatcher, sender, alert, auto_clock):
        sender.email.side_effect = [False, RuntimeError("smtp down"), True]

        result = await dispatcher.deliver(_sub("EMAIL", email="farmer@example.com"), alert)

        assert result.success is True
        assert result.attempts == 3
        assert sender.email.await_count == 3
        assert auto_clock.sleeps == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, dispatcher, sender, alert, auto_clock):
        sender.sms.return_value = False

        result = await dispatcher.deliver(_sub("SMS", phone_number="+15550100"), alert)

        assert result.success is False
        assert result.attempts == 3
        assert result.error == "sms delivery rejected"
        assert auto_clock.sleeps == [5.0, 5.0]
        assert dispatcher.recent_deliveries[-1] is result

    @pytest.mark.asyncio
    async def test_exception_recorded_as_error(self, dispatcher, sender, alert):
        sender.in_app.side_effect = RuntimeError("inbox unavailable")

        result = await dispatcher.deliver(_sub("IN_APP"), alert)

        assert result.success is False
        assert result.error == "in_app: inbox unavailable"

    @pytest.mark.asyncio
    async def test_all_fans_out_to_email_and_push(self, dispatcher, sender, alert):
        result = await dispatcher.deliver(_sub("ALL", email="farmer@example.com"), alert)

        assert result.success is True
        assert result.delivered_channels == ["email", "push"]
        sender.email.assert_awaited_once_with("farmer@example.com", alert)
        sender.push.assert_awaited_once_with("farmer-1", alert)
        sender.sms.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_retries_only_failed_channel(self, dispatcher, sender, alert, auto_clock):
        sender.push.side_effect = [False, True]

        result = await dispatcher.deliver(_sub("ALL", email="farmer@example.com"), alert)

        assert result.success is True
        assert result.attempts == 2
        assert sender.email.await_count == 1
        assert sender.push.await_count == 2
        assert auto_clock.sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_all_without_email_sends_push_only(self, dispatcher, sender, alert):
        result = await dispatcher.deliver(_sub("ALL"), alert)

        assert result.success is True
        assert result.delivered_channels == ["push"]
        sender.email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_deliverable_channel(self, alert, auto_clock):
        sub = _sub("ALL", user_id="farmer-1")
        # Blank user ids are rejected on construction, so clear it afterwards
        sub.user_id = " "
        dispatcher = NotificationDispatcher(FakeSender(), clock=auto_clock)

        result = await dispatcher.deliver(sub, alert)

        assert result.success is False
        assert result.attempts == 0
        assert result.error == "no deliverable channel"


class TestQueue:
    @pytest.mark.asyncio
    async def test_submit_and_drain(self, dispatcher, sender, alert):
        await dispatcher.start()
        assert dispatcher.is_running

        queued = dispatcher.submit(
            alert,
            [_sub("PUSH", id=1, user_id="a"), _sub("IN_APP", id=2, user_id="b")],
        )
        assert queued == 2

        await dispatcher.stop()

        assert not dispatcher.is_running
        assert dispatcher.pending_jobs == 0
        sender.push.assert_awaited_once_with("a", alert)
        sender.in_app.assert_awaited_once_with("b", alert)
        assert {r.user_id for r in dispatcher.recent_deliveries} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_stop_workers(self, sender, alert, auto_clock):
        dispatcher = NotificationDispatcher(
            sender,
            config=NotificationConfig(worker_count=1),
            clock=auto_clock,
        )
        sender.push.side_effect = [RuntimeError("boom")] * 3 + [True]
        await dispatcher.start()

        dispatcher.submit(alert, [_sub("PUSH", id=1, user_id="a")])
        dispatcher.submit(alert, [_sub("PUSH", id=2, user_id="b")])
        await dispatcher.stop()

        results = {r.user_id: r.success for r in dispatcher.recent_deliveries}
        assert results == {"a": False, "b": True}

    def test_submit_drops_when_full(self, sender, alert, auto_clock):
        dispatcher = NotificationDispatcher(
            sender,
            config=NotificationConfig(queue_max_size=1),
            clock=auto_clock,
        )

        queued = dispatcher.submit(
            alert,
            [_sub("PUSH", id=1, user_id="a"), _sub("PUSH", id=2, user_id="b")],
        )

        assert queued == 1
        assert dispatcher.pending_jobs == 1

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self, dispatcher):
        await dispatcher.stop()
        assert not dispatcher.is_running
