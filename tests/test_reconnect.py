"""Tests for the bounded reconnection controller."""

from unittest import mock

import pytest

from rtc_chat.client.reconnect import PeerRole, ReconnectionController
from rtc_chat.exceptions import ReconnectError, ReconnectExhaustedError


@pytest.fixture
def rebuild():
    return mock.AsyncMock()


@pytest.fixture
def replay():
    return mock.AsyncMock()


@pytest.fixture
def controller(rebuild, replay):
    return ReconnectionController(rebuild, replay, max_attempts=3)


class TestAttempt:
    @pytest.mark.asyncio
    async def test_success_without_room_only_rebuilds(self, controller, rebuild, replay):
        await controller.attempt()

        rebuild.assert_awaited_once()
        replay.assert_not_awaited()
        assert controller.attempts == 0

    @pytest.mark.asyncio
    async def test_success_replays_recorded_role(self, controller, replay):
        controller.record("room", PeerRole.JOINER)

        await controller.attempt()

        replay.assert_awaited_once_with("room", PeerRole.JOINER)

    @pytest.mark.asyncio
    async def test_forget_stops_replay(self, controller, replay):
        controller.record("room", PeerRole.CREATOR)
        controller.forget()

        await controller.attempt()

        replay.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_wrapped(self, controller, replay):
        controller.record("room", PeerRole.CREATOR)
        replay.side_effect = RuntimeError("relay down")

        with pytest.raises(ReconnectError) as excinfo:
            await controller.attempt()

        assert not isinstance(excinfo.value, ReconnectExhaustedError)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert controller.attempts == 1


class TestBudget:
    @pytest.mark.asyncio
    async def test_fourth_attempt_fails_without_work(self, controller, rebuild):
        rebuild.side_effect = RuntimeError("boom")

        for n in range(3):
            with pytest.raises(ReconnectError):
                await controller.attempt()
            assert controller.attempts == n + 1

        assert controller.exhausted
        rebuild.reset_mock()

        with pytest.raises(ReconnectExhaustedError) as excinfo:
            await controller.attempt()

        rebuild.assert_not_awaited()
        assert excinfo.value.max_attempts == 3
        assert controller.attempts == 3

    @pytest.mark.asyncio
    async def test_success_resets_budget(self, controller, rebuild):
        rebuild.side_effect = [RuntimeError("a"), RuntimeError("b"), None]

        for _ in range(2):
            with pytest.raises(ReconnectError):
                await controller.attempt()
        await controller.attempt()

        assert controller.attempts == 0
        assert not controller.exhausted

    def test_reset(self, controller):
        controller.attempts = 3

        controller.reset()

        assert controller.attempts == 0
