from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest

from keepalive.config import PingerSettings
from keepalive.models import Severity
from keepalive.notifiers import Notifier


class FakeResponse:
    def __init__(self, status: int):
        self.status = status


class FakePage:
    def __init__(self, browser: "FakeBrowser", user_agent: str | None):
        self.browser = browser
        self.user_agent = user_agent

    async def goto(self, url: str, *, wait_until: str, timeout: int):
        browser = self.browser
        browser.opened.append((url, asyncio.get_running_loop().time()))
        browser.in_flight += 1
        browser.max_in_flight = max(browser.max_in_flight, browser.in_flight)
        try:
            delay = browser.delays.get(url, 0.0)
            if delay:
                await asyncio.sleep(delay)
            behavior = browser.behaviors.get(url, 200)
            if isinstance(behavior, BaseException):
                raise behavior
            if behavior is None:
                return None
            return FakeResponse(int(behavior))
        finally:
            browser.in_flight -= 1


class FakeBrowser:
    """Stands in for a Playwright browser: per-URL status codes, exceptions and delays."""

    def __init__(self, behaviors: dict[str, Any] | None = None, delays: dict[str, float] | None = None):
        self.behaviors = behaviors or {}
        self.delays = delays or {}
        self.opened: list[tuple[str, float]] = []
        self.pages: list[FakePage] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.launched = 0
        self.closed = 0

    async def new_page(self, **kwargs: Any) -> FakePage:
        page = FakePage(self, kwargs.get("user_agent"))
        self.pages.append(page)
        return page

    @asynccontextmanager
    async def launcher(self):
        self.launched += 1
        try:
            yield self
        finally:
            self.closed += 1


class RecordingNotifier(Notifier):
    name = "recording"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    @property
    def enabled(self) -> bool:
        return True

    async def notify(self, title, description, fields=(), severity=Severity.WARNING) -> bool:
        self.calls.append({"title": title, "description": description, "fields": list(fields), "severity": severity})
        return True


def http_transport(statuses: dict[str, Any], delays: dict[str, float] | None = None) -> httpx.MockTransport:
    """Mock transport keyed by URL host: an int status or an exception class to raise."""
    delays = delays or {}

    async def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if delays.get(host):
            await asyncio.sleep(delays[host])
        behavior = statuses.get(host, 200)
        if isinstance(behavior, type) and issubclass(behavior, Exception):
            raise behavior("simulated failure", request=request)
        return httpx.Response(int(behavior))

    return httpx.MockTransport(handler)


@pytest.fixture
def make_settings():
    def _make(targets: list[str], **overrides: Any) -> PingerSettings:
        values: dict[str, Any] = {
            "targets": targets,
            "startup_delay_seconds": 3600,
            "inter_phase_delay_seconds": 0,
            "tab_stagger_seconds": 0,
            "settle_seconds": 0,
            "http_timeout_seconds": 2,
            "browser_timeout_seconds": 2,
        }
        values.update(overrides)
        return PingerSettings(**values)

    return _make
