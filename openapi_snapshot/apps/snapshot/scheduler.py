"""
Watch Scheduler - Interval Snapshots with Failure Backoff

Repeats the snapshot pipeline on an interval until interrupted.

Features:
- One-time startup reachability check with an interactive URL prompt
- One fetch per cycle, projected for every configured target
- Failure-streak backoff: interval * multiplier^(min(streak, cap) - 1)
- Graceful shutdown on SIGINT/SIGTERM, racing both the wait and the fetch

Usage:
    controller = WatchController(config, policy)
    state = await controller.start()
"""

import asyncio
import logging
import signal
import sys
from typing import Callable

import click
import httpx

from openapi_snapshot.apps.snapshot.fetcher import check_reachable
from openapi_snapshot.apps.snapshot.pipeline import run_once
from openapi_snapshot.utils.config import SnapshotConfig
from openapi_snapshot.utils.errors import HttpStatusError, SnapshotError
from openapi_snapshot.utils.schemas import WatchPolicy, WatchState

logger = logging.getLogger(__name__)


def next_delay_ms(policy: WatchPolicy, failure_streak: int) -> int:
    """
    Delay before the next cycle.

    The base interval after a success; after n consecutive failures
    interval * multiplier^(min(n, cap) - 1), never above max_delay_ms (or the
    base interval, if that is larger) and never below min_interval_ms.
    """
    delay: float = policy.interval_ms
    if failure_streak > 0:
        exponent = min(failure_streak, policy.backoff_cap) - 1
        delay = policy.interval_ms * policy.backoff_multiplier ** exponent
        delay = min(delay, max(policy.max_delay_ms, policy.interval_ms))
    return int(max(delay, policy.min_interval_ms))


def normalize_user_url(value: str, base_url: str) -> str | None:
    """
    Turn prompt input into a complete URL.

    A bare port or host:port keeps the scheme and path of `base_url`; a full
    http(s) URL is used as given. Anything else is rejected with None.
    """
    value = value.strip()
    if not value or any(c.isspace() for c in value):
        return None
    if value.startswith(("http://", "https://")):
        return value

    base = httpx.URL(base_url)
    if value.isdigit():
        return str(base.copy_with(port=int(value)))

    host, sep, port = value.rpartition(":")
    if sep and host and port.isdigit() and "/" not in host:
        return str(base.copy_with(host=host, port=int(port)))
    return None


def prompt_for_url(current_url: str) -> str | None:
    """Ask for a replacement URL on the terminal. Empty input keeps the current one."""
    while True:
        answer = click.prompt(
            f"OpenAPI URL (default: {current_url}) - enter port or URL",
            default="",
            show_default=False,
            err=True,
        )
        if not answer.strip():
            return None
        url = normalize_user_url(answer, current_url)
        if url is not None:
            return url
        click.echo("Invalid input. Enter a port (e.g., 3000) or full URL.", err=True)


class WatchController:
    """
    Drives repeated snapshot cycles.

    Handles:
    - Startup URL resolution (prompted at most once per process)
    - Cycle execution and failure backoff
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        config: SnapshotConfig,
        policy: WatchPolicy,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        prompt: Callable[[str], str | None] | None = None,
        interactive: bool | None = None,
    ) -> None:
        """
        Initialize controller.

        Args:
            config: Validated run configuration
            policy: Interval and backoff policy
            transport: Optional httpx transport shared by every request
            prompt: Replacement-URL prompt, defaults to a terminal prompt
            interactive: Whether prompting is allowed, defaults to stdin being a TTY
        """
        self.config = config
        self.policy = policy
        self.transport = transport
        self.prompt = prompt or prompt_for_url
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self.state = WatchState(resolved_url=config.url, interval_ms=next_delay_ms(policy, 0))
        self.shutdown_event = asyncio.Event()
        self._signals: list[signal.Signals] = []

        logger.info(
            "WatchController initialized",
            extra={
                "url": config.url,
                "interval_ms": policy.interval_ms,
                "out": str(config.out) if config.out else "stdout",
                "outline_out": str(config.outline_out) if config.outline_out else None,
            },
        )

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current wait or fetch."""
        self.shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int, frame: object = None) -> None:
            logger.info("Received signal %s, initiating graceful shutdown", signum)
            self.request_shutdown()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, signal_handler, sig)
                self._signals.append(sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, signal_handler)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    async def resolve_url(self) -> str:
        """
        Check the configured URL once and offer a replacement if it is unreachable.

        Only a URL that came from the default is replaced; an explicit --url is
        kept and its failures go through the normal backoff.

        The result is fixed for the rest of the process; later failures never prompt.
        """
        if self.state.prompted:
            return self.state.resolved_url

        reachable = await check_reachable(
            self.state.resolved_url,
            headers=self.config.headers,
            timeout_ms=self.config.timeout_ms,
            transport=self.transport,
        )
        if reachable or not self.interactive or not self.config.url_from_default:
            return self.state.resolved_url

        self.state.prompted = True
        replacement = self.prompt(self.state.resolved_url)
        if replacement:
            click.echo(f"Switching watch URL to '{replacement}'.", err=True)
            logger.info("Watch URL replaced after prompt", extra={"url": replacement})
            self.state.resolved_url = replacement
        return self.state.resolved_url

    async def run_cycle(self) -> list[str]:
        """One fetch -> project -> write pass against the resolved URL."""
        return await run_once(self.config, url=self.state.resolved_url, transport=self.transport)

    async def _run_cycle_until_shutdown(self) -> list[str] | None:
        """Run one cycle, abandoning it if shutdown is requested first.

        Returns None when the cycle was abandoned. Writes are synchronous, so
        cancellation can only land while the fetch is suspended.
        """
        cycle_task = asyncio.create_task(self.run_cycle())
        shutdown_task = asyncio.create_task(self.shutdown_event.wait())

        done, pending = await asyncio.wait(
            [cycle_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if cycle_task in done:
            return cycle_task.result()
        return None

    async def wait_for_next_cycle(self, delay_ms: int) -> bool:
        """Wait out the inter-cycle delay. Returns True if shutdown was requested."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return False
        return True

    def record_success(self, written: list[str]) -> None:
        self.state.failure_streak = 0
        self.state.interval_ms = next_delay_ms(self.policy, 0)
        logger.info(
            "Snapshot cycle %d updated %s",
            self.state.cycles,
            ", ".join(written),
            extra={"url": self.state.resolved_url},
        )

    def record_failure(self, error: SnapshotError) -> None:
        self.state.failure_streak += 1
        self.state.interval_ms = next_delay_ms(self.policy, self.state.failure_streak)

        extra = {
            "url": self.state.resolved_url,
            "failure_streak": self.state.failure_streak,
            "error_type": type(error).__name__,
        }
        if isinstance(error, HttpStatusError):
            extra["status"] = error.status
            extra["body_snippet"] = error.body_snippet
        logger.error(
            "Snapshot cycle %d failed, next attempt in %dms: %s",
            self.state.cycles,
            self.state.interval_ms,
            error,
            extra=extra,
        )

    async def start(self, install_signal_handlers: bool = True) -> WatchState:
        """
        Resolve the URL, then run cycles until shutdown.

        A failed cycle never ends the loop; it only lengthens the next delay.

        Returns:
            Final watch state
        """
        await self.resolve_url()

        if install_signal_handlers:
            self.setup_signal_handlers()

        logger.info("Watching %s every %dms", self.state.resolved_url, self.state.interval_ms)

        try:
            while not self.shutdown_event.is_set():
                self.state.cycles += 1
                try:
                    written = await self._run_cycle_until_shutdown()
                except SnapshotError as e:
                    self.record_failure(e)
                else:
                    if written is None:
                        break
                    self.record_success(written)

                if await self.wait_for_next_cycle(self.state.interval_ms):
                    break
        finally:
            self.state.cancelled = self.shutdown_event.is_set()
            if install_signal_handlers:
                self.remove_signal_handlers()
            logger.info(
                "Watch stopped",
                extra={"cycles": self.state.cycles, "failure_streak": self.state.failure_streak},
            )

        return self.state
