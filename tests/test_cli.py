from __future__ import annotations

import json
from contextlib import asynccontextmanager

import pytest

from conftest import FakeBrowser, RecordingNotifier, http_transport
from keepalive.__main__ import run_once
from keepalive.orchestrator import PingCycle
from keepalive.state import StatusBoard


def _printed_summary(capsys) -> dict:
    # Log lines share stdout; the summary is the indented block after them.
    lines = capsys.readouterr().out.splitlines()
    return json.loads("\n".join(lines[lines.index("{"):]))


def _cycle(settings, browser: FakeBrowser, statuses=None) -> PingCycle:
    return PingCycle(
        settings,
        StatusBoard(settings.targets, settings.interval_seconds),
        RecordingNotifier(),
        browser_launcher=browser.launcher,
        http_transport=http_transport(statuses or {}),
    )


@pytest.mark.asyncio
async def test_once_exits_zero_when_every_probe_passes(make_settings, capsys) -> None:
    settings = make_settings(["http://a", "http://b"])

    code = await run_once(settings, _cycle(settings, FakeBrowser()))

    assert code == 0
    out = _printed_summary(capsys)
    assert set(out) == {"lastRun", "lastStatus", "results"}
    assert out["lastStatus"] == "HTTP: 2/2, Browser: 2/2 successful"
    assert [r["url"] for r in out["results"]] == ["http://a", "http://b"]
    assert out["results"][0]["http"]["success"] is True
    assert out["results"][0]["browser"]["statusCode"] == 200


@pytest.mark.asyncio
async def test_once_exits_one_when_a_target_fails(make_settings, capsys) -> None:
    settings = make_settings(["http://ok", "http://down"])

    code = await run_once(settings, _cycle(settings, FakeBrowser({"http://down": 503}), {"down": 503}))

    assert code == 1
    out = _printed_summary(capsys)
    assert out["lastStatus"] == "HTTP: 1/2, Browser: 1/2 successful"
    assert out["results"][1]["http"]["error"] == "HTTP 503"


@pytest.mark.asyncio
async def test_once_exits_one_when_the_cycle_aborts(make_settings, capsys) -> None:
    settings = make_settings(["http://a"])

    @asynccontextmanager
    async def broken_launcher():
        raise RuntimeError("chromium missing")
        yield  # pragma: no cover

    cycle = PingCycle(
        settings,
        StatusBoard(settings.targets, settings.interval_seconds),
        RecordingNotifier(),
        browser_launcher=broken_launcher,
        http_transport=http_transport({}),
    )

    code = await run_once(settings, cycle)

    assert code == 1
    out = _printed_summary(capsys)
    assert out["lastStatus"].startswith("Failed: RuntimeError: chromium missing")
