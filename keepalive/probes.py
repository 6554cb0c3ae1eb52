from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Protocol

import httpx
import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from keepalive.models import ProbeOutcome


logger = structlog.get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class BrowserSession(Protocol):
    """The slice of a Playwright ``Browser`` the browser phase relies on."""

    async def new_page(self, **kwargs: Any) -> Any: ...


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000.0))


def _describe_error(exc: BaseException) -> str:
    msg = str(exc).strip().splitlines()[0] if str(exc).strip() else ""
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


async def http_probe(client: httpx.AsyncClient, url: str, *, timeout_seconds: float) -> ProbeOutcome:
    """Single GET against ``url``. Never raises; failures become failed outcomes."""
    logger.info("HTTP ping", url=url)
    started = time.perf_counter()
    try:
        resp = await client.get(url, follow_redirects=True, timeout=timeout_seconds)
    except httpx.TimeoutException:
        logger.warning("HTTP timeout", url=url, timeout_seconds=timeout_seconds)
        return ProbeOutcome.from_error(f"Timeout after {timeout_seconds:g}s")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("HTTP error", url=url, error=_describe_error(e))
        return ProbeOutcome.from_error(_describe_error(e))

    outcome = ProbeOutcome.from_status(resp.status_code, _elapsed_ms(started))
    if outcome.success:
        logger.info("HTTP success", url=url, status_code=outcome.status_code, duration_ms=outcome.duration_ms)
    else:
        logger.warning("HTTP bad status", url=url, status_code=outcome.status_code, duration_ms=outcome.duration_ms)
    return outcome


async def browser_probe(
    browser: BrowserSession,
    url: str,
    *,
    timeout_seconds: float,
    user_agent: str = USER_AGENT,
) -> tuple[ProbeOutcome, Any]:
    """Open a fresh tab and navigate to ``url``.

    Returns the outcome and the page, which is left open so the caller can
    keep it alive for the settle period. The page is ``None`` when the tab
    could not be opened.
    """
    page = None
    try:
        page = await browser.new_page(user_agent=user_agent)
        logger.info("Loading browser", url=url)
        started = time.perf_counter()
        response = await page.goto(url, wait_until="load", timeout=int(timeout_seconds * 1000))
    except PlaywrightTimeoutError:
        logger.warning("Browser timeout", url=url, timeout_seconds=timeout_seconds)
        return ProbeOutcome.from_error(f"Timeout after {timeout_seconds:g}s"), page
    except Exception as e:
        logger.warning("Browser failed", url=url, error=_describe_error(e))
        return ProbeOutcome.from_error(_describe_error(e)), page

    duration_ms = _elapsed_ms(started)
    if response is None:
        # about:blank and same-document navigations have no response.
        logger.warning("Browser got no response", url=url)
        return ProbeOutcome.from_error("No response", duration_ms=duration_ms), page

    outcome = ProbeOutcome.from_status(response.status, duration_ms)
    if outcome.success:
        logger.info("Browser loaded", url=url, status_code=outcome.status_code, duration_ms=duration_ms)
    else:
        logger.warning("Browser bad status", url=url, status_code=outcome.status_code, duration_ms=duration_ms)
    return outcome, page


def find_chromium_executable(explicit: str | None = None) -> str | None:
    for path in (explicit, os.getenv("CHROMIUM_PATH")):
        if path and Path(path).exists():
            return path

    candidates = [
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    ]
    for path in candidates:
        if Path(path).exists():
            return path
    # Fall back to the Playwright-managed Chromium.
    return None


def _chromium_args() -> list[str]:
    args = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-gpu",
        "--disable-extensions",
        "--disable-background-networking",
        "--disable-sync",
        "--no-first-run",
        "--no-default-browser-check",
    ]

    shm_bytes = 0
    try:
        st = os.statvfs("/dev/shm")
        shm_bytes = int(st.f_frsize) * int(st.f_blocks)
    except (OSError, AttributeError):
        shm_bytes = 0
    if shm_bytes < (512 * 1024 * 1024):
        # Small /dev/shm (containers, free hosting tiers) crashes renderers.
        args.append("--disable-dev-shm-usage")
    return args


@asynccontextmanager
async def launch_chromium(chromium_path: str | None = None) -> AsyncIterator[BrowserSession]:
    """Launch one headless Chromium for a whole cycle and always close it."""
    async with async_playwright() as p:
        launch_kwargs: dict[str, Any] = {"headless": True, "args": _chromium_args()}
        executable = find_chromium_executable(chromium_path)
        if executable:
            launch_kwargs["executable_path"] = executable
        browser = await p.chromium.launch(**launch_kwargs)
        logger.info("Browser launched", executable=executable or "playwright-bundled")
        try:
            yield browser
        finally:
            try:
                await browser.close()
                logger.info("Browser closed")
            except Exception as e:
                logger.error("Error closing browser", error=_describe_error(e))
