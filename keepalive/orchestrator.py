"""One ping cycle: request phase, browser phase, aggregation and alerting."""

from __future__ import annotations

import asyncio
from typing import AsyncContextManager, Callable, Optional, Sequence

import httpx
import structlog

from keepalive.config import PingerSettings
from keepalive.models import CycleResult, CycleSummary, NotificationField, ProbeOutcome, Severity, utcnow
from keepalive.notifiers import Notifier
from keepalive.probes import USER_AGENT, BrowserSession, browser_probe, http_probe, launch_chromium
from keepalive.state import StatusBoard


logger = structlog.get_logger(__name__)

BrowserLauncher = Callable[[], AsyncContextManager[BrowserSession]]

ALERT_TITLE = "⚠️ Keep-alive Pinger Alert"
CRITICAL_TITLE = "🚨 Critical Ping Cycle Failure"
FIELD_ERROR_MAX = 200


def _mark(outcome: ProbeOutcome) -> str:
    return "✅" if outcome.success else "❌"


def _render_phase(label: str, outcome: ProbeOutcome) -> str:
    line = f"{label}: {_mark(outcome)} ({outcome.status_code or 'N/A'})"
    if outcome.error and not outcome.success:
        line += f" {outcome.error[:FIELD_ERROR_MAX]}"
    return line


def build_failure_field(result: CycleResult) -> NotificationField:
    lines = []
    if result.http is not None:
        lines.append(_render_phase("HTTP", result.http))
    if result.browser is not None:
        lines.append(_render_phase("Browser", result.browser))
    return NotificationField(name=result.url, value="\n".join(lines))


def build_status_line(results: Sequence[CycleResult], *, http_enabled: bool, browser_enabled: bool) -> str:
    total = len(results)
    parts = []
    if http_enabled:
        ok = sum(1 for r in results if r.http is not None and r.http.success)
        parts.append(f"HTTP: {ok}/{total}")
    if browser_enabled:
        ok = sum(1 for r in results if r.browser is not None and r.browser.success)
        parts.append(f"Browser: {ok}/{total}")
    return ", ".join(parts) + " successful"


class PingCycle:
    """Runs ping cycles over the configured targets and publishes the outcome."""

    def __init__(
        self,
        settings: PingerSettings,
        board: StatusBoard,
        notifier: Notifier,
        *,
        browser_launcher: Optional[BrowserLauncher] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.board = board
        self.notifier = notifier
        self._browser_launcher = browser_launcher or (lambda: launch_chromium(settings.chromium_path))
        self._http_transport = http_transport

    async def run(self, targets: Optional[Sequence[str]] = None) -> CycleSummary:
        targets = list(self.settings.targets if targets is None else targets)
        started_at = utcnow()
        self.board.mark_started(started_at)
        logger.info("Starting ping cycle", started_at=started_at.isoformat(), targets=len(targets))

        http_outcomes: list[Optional[ProbeOutcome]] = [None] * len(targets)
        try:
            if targets and self.settings.http_probe_enabled:
                http_outcomes = await self._http_phase(targets)
                if self.settings.browser_probe_enabled:
                    await self._pause("Waiting before launching browser", self.settings.inter_phase_delay_seconds)

            browser_outcomes: list[Optional[ProbeOutcome]] = [None] * len(targets)
            if targets and self.settings.browser_probe_enabled:
                browser_outcomes = await self._browser_phase(targets)

            results = tuple(
                CycleResult(url=url, http=http, browser=browser)
                for url, http, browser in zip(targets, http_outcomes, browser_outcomes)
            )
            summary = CycleSummary(
                last_run=started_at,
                last_status=build_status_line(
                    results,
                    http_enabled=self.settings.http_probe_enabled,
                    browser_enabled=self.settings.browser_probe_enabled,
                ),
                results=results,
            )
        except Exception as e:
            return await self._abort(started_at, targets, http_outcomes, e)

        self.board.publish(summary)
        logger.info("Cycle complete", status=summary.last_status)
        await self._report_failures(summary)
        return summary

    async def _pause(self, message: str, seconds: float) -> None:
        if seconds <= 0:
            return
        logger.info(message, seconds=seconds)
        await asyncio.sleep(seconds)

    async def _http_phase(self, targets: list[str]) -> list[Optional[ProbeOutcome]]:
        logger.info("Sending HTTP requests in parallel", count=len(targets))
        async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, transport=self._http_transport) as client:
            outcomes = await asyncio.gather(
                *(http_probe(client, url, timeout_seconds=self.settings.http_timeout_seconds) for url in targets)
            )
        return list(outcomes)

    async def _browser_phase(self, targets: list[str]) -> list[Optional[ProbeOutcome]]:
        # A slot stays taken through the stagger delay, so with one slot the
        # next tab opens only after the previous load plus the delay.
        semaphore = asyncio.Semaphore(self.settings.tab_concurrency)
        stagger = self.settings.tab_stagger_seconds
        last_index = len(targets) - 1
        logger.info(
            "Opening targets in browser",
            count=len(targets),
            tab_concurrency=self.settings.tab_concurrency,
            stagger_seconds=stagger,
        )

        async with self._browser_launcher() as browser:

            async def _open(index: int, url: str) -> ProbeOutcome:
                async with semaphore:
                    outcome, _page = await browser_probe(
                        browser, url, timeout_seconds=self.settings.browser_timeout_seconds
                    )
                    if index < last_index and stagger > 0:
                        await asyncio.sleep(stagger)
                return outcome

            tasks = [asyncio.create_task(_open(i, url)) for i, url in enumerate(targets)]
            try:
                outcomes = await asyncio.gather(*tasks)
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
            await self._pause("Keeping all tabs open to ensure full spin-up", self.settings.settle_seconds)

        return list(outcomes)

    async def _abort(
        self,
        started_at,
        targets: list[str],
        http_outcomes: list[Optional[ProbeOutcome]],
        exc: Exception,
    ) -> CycleSummary:
        reason = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        logger.exception("Critical error during ping cycle", error=reason)

        results = []
        for url, http in zip(targets, http_outcomes):
            if http is None and self.settings.http_probe_enabled:
                http = ProbeOutcome.from_error(reason)
            browser = ProbeOutcome.from_error(reason) if self.settings.browser_probe_enabled else None
            results.append(CycleResult(url=url, http=http, browser=browser))

        summary = CycleSummary(last_run=started_at, last_status=f"Failed: {reason}", results=tuple(results))
        self.board.publish(summary)

        await self.notifier.notify(
            CRITICAL_TITLE,
            f"**The entire ping cycle failed**\n\nError: {reason}",
            [],
            Severity.CRITICAL,
        )
        return summary

    async def _report_failures(self, summary: CycleSummary) -> None:
        failed = summary.failed_results
        if not failed:
            return
        logger.warning("Targets failed this cycle", failed=[r.url for r in failed])
        await self.notifier.notify(
            ALERT_TITLE,
            f"**{len(failed)} app(s) had failures**\n\nStatus: {summary.last_status}",
            [build_failure_field(r) for r in failed],
            Severity.WARNING,
        )
