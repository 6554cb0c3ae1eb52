from __future__ import annotations

import time
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from conftest import FakeBrowser, RecordingNotifier, http_transport
from keepalive.app import create_app
from keepalive.orchestrator import PingCycle
from keepalive.state import StatusBoard


def _client(settings, browser: FakeBrowser, statuses=None) -> TestClient:
    board = StatusBoard(settings.targets, settings.interval_seconds)
    cycle = PingCycle(
        settings,
        board,
        RecordingNotifier(),
        browser_launcher=browser.launcher,
        http_transport=http_transport(statuses or {}),
    )
    return TestClient(create_app(cycle=cycle))


def _wait_for_status(client: TestClient, *, timeout: float = 3.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/").json()
        if body["lastStatus"] != "Not started yet" and body["results"]:
            return body
        time.sleep(0.02)
    raise AssertionError("ping cycle did not complete in time")


def test_status_before_first_cycle(make_settings) -> None:
    settings = make_settings(["http://a", "http://b"])
    with _client(settings, FakeBrowser()) as client:
        r = client.get("/")

    assert r.status_code == 200
    assert r.json() == {
        "status": "alive",
        "lastRun": None,
        "lastStatus": "Not started yet",
        "nextRun": "Soon",
        "targets": ["http://a", "http://b"],
        "results": [],
    }


def test_ping_now_acknowledges_and_updates_status(make_settings) -> None:
    settings = make_settings(["http://ok", "http://down"], interval_minutes=10)
    browser = FakeBrowser({"http://down": 503})
    with _client(settings, browser, statuses={"down": 503}) as client:
        r = client.get("/ping-now")
        assert r.status_code == 200
        assert r.json() == {"message": "Triggering ping cycle...", "status": "running"}

        body = _wait_for_status(client)

    assert body["lastStatus"] == "HTTP: 1/2, Browser: 1/2 successful"
    assert [res["url"] for res in body["results"]] == ["http://ok", "http://down"]
    down = body["results"][1]
    assert down["http"] == {
        "success": False,
        "statusCode": 503,
        "durationMs": down["http"]["durationMs"],
        "timestamp": down["http"]["timestamp"],
        "error": "HTTP 503",
    }
    assert down["browser"]["statusCode"] == 503

    last_run = datetime.fromisoformat(body["lastRun"])
    next_run = datetime.fromisoformat(body["nextRun"])
    assert next_run - last_run == timedelta(minutes=10)


def test_ping_now_while_running_is_skipped(make_settings) -> None:
    settings = make_settings(["http://a"])
    browser = FakeBrowser(delays={"http://a": 0.3})
    with _client(settings, browser) as client:
        first = client.post("/ping-now").json()
        second = client.post("/ping-now").json()
        _wait_for_status(client)

    assert first["status"] == "running"
    assert second == {"message": "Ping cycle already in progress", "status": "skipped"}
    assert browser.launched == 1
