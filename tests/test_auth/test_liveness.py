"""Tests for authorization surfaces and the liveness monitor."""

from __future__ import annotations

import asyncio

import pytest

from oauthflow.auth.liveness import LivenessMonitor
from oauthflow.auth.surface import BrowserSurface, CallbackSurface, SurfaceObservationError


class TestSurfaces:
    def test_browser_surface_is_unobservable(self) -> None:
        opened: list[str] = []
        surface = BrowserSurface(opener=opened.append)
        surface.open("https://idp/authorize")
        with pytest.raises(SurfaceObservationError):
            surface.is_closed()

    def test_callback_surface(self) -> None:
        opened: list[str] = []
        closed = {"value": False}
        surface = CallbackSurface(opened.append, closed_check=lambda: closed["value"])

        surface.open("https://idp/authorize")
        assert opened == ["https://idp/authorize"]
        assert surface.is_closed() is False
        closed["value"] = True
        assert surface.is_closed() is True

    def test_callback_surface_without_closed_check(self) -> None:
        with pytest.raises(SurfaceObservationError):
            CallbackSurface(lambda url: None).is_closed()


class TestLivenessMonitor:
    @pytest.mark.asyncio
    async def test_closed_surface_fires_once(self) -> None:
        closed_calls: list[bool] = []
        state = {"closed": False}
        surface = CallbackSurface(lambda url: None, closed_check=lambda: state["closed"])
        monitor = LivenessMonitor(
            surface, on_closed=lambda: closed_calls.append(True), interval=0.01
        )
        monitor.start()
        await asyncio.sleep(0.03)
        assert closed_calls == []

        state["closed"] = True
        await asyncio.sleep(0.05)

        assert closed_calls == [True]
        assert monitor.running is False
        assert monitor.degraded is False

    @pytest.mark.asyncio
    async def test_degrades_and_polls(self) -> None:
        polls: list[bool] = []
        monitor = LivenessMonitor(
            CallbackSurface(lambda url: None),
            on_poll=lambda: polls.append(True),
            interval=0.01,
            degraded_interval=0.01,
        )
        monitor.start()
        await asyncio.sleep(0.06)
        monitor.stop()

        assert monitor.degraded is True
        assert len(polls) >= 2

    @pytest.mark.asyncio
    async def test_ceiling_stops_polling(self) -> None:
        polls: list[bool] = []
        monitor = LivenessMonitor(
            CallbackSurface(lambda url: None),
            on_poll=lambda: polls.append(True),
            interval=0.01,
            degraded_interval=0.01,
            ceiling=0.03,
        )
        monitor.start()
        await asyncio.sleep(0.08)
        count = len(polls)
        await asyncio.sleep(0.03)

        assert monitor.running is False
        assert len(polls) == count

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_polling(self) -> None:
        polls: list[bool] = []

        def on_poll() -> None:
            polls.append(True)
            raise RuntimeError("sweep failed")

        monitor = LivenessMonitor(
            CallbackSurface(lambda url: None),
            on_poll=on_poll,
            interval=0.01,
            degraded_interval=0.01,
        )
        monitor.start()
        await asyncio.sleep(0.05)
        monitor.stop()

        assert len(polls) >= 2

    @pytest.mark.asyncio
    async def test_stop(self) -> None:
        monitor = LivenessMonitor(CallbackSurface(lambda url: None), interval=0.01)
        monitor.start()
        assert monitor.running is True
        monitor.stop()
        await asyncio.sleep(0.02)
        assert monitor.running is False
