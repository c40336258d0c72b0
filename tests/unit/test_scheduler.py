"""Tests for watch backoff, URL prompt handling and the cycle loop."""

import asyncio
from pathlib import Path
from typing import Any

import httpx
import orjson
import pytest

from openapi_snapshot.apps.snapshot.scheduler import (
    WatchController,
    next_delay_ms,
    normalize_user_url,
)
from openapi_snapshot.utils.config import SnapshotConfig
from openapi_snapshot.utils.schemas import ProjectionRequest, ReduceKey, RetryPolicy, WatchPolicy

URL = "http://api.test/api-docs/openapi.json"
DEFAULT_URL = "http://localhost:3000/api-docs/openapi.json"
POLICY = WatchPolicy(interval_ms=2000, backoff_multiplier=2, backoff_cap=3, max_delay_ms=10_000)


def make_config(tmp_path: Path, **overrides: Any) -> SnapshotConfig:
    values: dict[str, Any] = {
        "url": URL,
        "out": tmp_path / "openapi" / "backend_openapi.json",
        "retry": RetryPolicy(max_retries=0, base_delay_ms=0),
    }
    values.update(overrides)
    return SnapshotConfig(**values)


class RecordingController(WatchController):
    """Records inter-cycle delays instead of sleeping; stops after `stop_after` waits."""

    def __init__(self, *args: Any, stop_after: int, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.stop_after = stop_after
        self.delays: list[int] = []

    async def wait_for_next_cycle(self, delay_ms: int) -> bool:
        self.delays.append(delay_ms)
        if len(self.delays) >= self.stop_after:
            self.request_shutdown()
            return True
        return False


class TestNextDelay:
    def test_success_uses_base_interval(self) -> None:
        assert next_delay_ms(POLICY, 0) == 2000

    def test_doubles_then_caps(self) -> None:
        assert [next_delay_ms(POLICY, streak) for streak in range(1, 7)] == [
            2000,
            4000,
            8000,
            8000,
            8000,
            8000,
        ]

    def test_bounded_by_max_delay(self) -> None:
        policy = WatchPolicy(interval_ms=2000, backoff_multiplier=10, backoff_cap=5, max_delay_ms=10_000)
        assert next_delay_ms(policy, 3) == 10_000

    def test_never_below_min_interval(self) -> None:
        policy = WatchPolicy(interval_ms=100, min_interval_ms=250)
        assert next_delay_ms(policy, 0) == 250


class TestNormalizeUserUrl:
    def test_port(self) -> None:
        assert normalize_user_url("3001", DEFAULT_URL) == "http://localhost:3001/api-docs/openapi.json"

    def test_host_port(self) -> None:
        assert normalize_user_url("localhost:4000", DEFAULT_URL) == "http://localhost:4000/api-docs/openapi.json"

    def test_other_host_port(self) -> None:
        assert normalize_user_url("10.0.0.5:8080", DEFAULT_URL) == "http://10.0.0.5:8080/api-docs/openapi.json"

    def test_full_url(self) -> None:
        assert normalize_user_url("https://example.com/openapi.json", DEFAULT_URL) == (
            "https://example.com/openapi.json"
        )

    @pytest.mark.parametrize("value", ["not a url", "", "example.com", "host:port"])
    def test_rejects_invalid(self, value: str) -> None:
        assert normalize_user_url(value, DEFAULT_URL) is None


class TestWatchLoop:
    def test_backoff_then_reset(self, tmp_path: Path, scripted_endpoint: Any, health_doc: dict) -> None:
        down = httpx.Response(503, text="down")
        endpoint = scripted_endpoint([health_doc, down, down, down, health_doc])
        controller = RecordingController(
            make_config(tmp_path),
            POLICY,
            transport=endpoint.transport,
            interactive=False,
            stop_after=4,
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert controller.delays == [2000, 4000, 8000, 2000]
        assert state.failure_streak == 0
        assert state.cycles == 4
        assert state.cancelled
        assert orjson.loads((tmp_path / "openapi" / "backend_openapi.json").read_bytes()) == health_doc

    def test_one_fetch_per_cycle_for_both_targets(
        self, tmp_path: Path, scripted_endpoint: Any, health_doc: dict
    ) -> None:
        endpoint = scripted_endpoint([health_doc])
        config = make_config(
            tmp_path,
            outline_out=tmp_path / "openapi" / "outline.json",
            projection=ProjectionRequest.reduce([ReduceKey.PATHS, ReduceKey.COMPONENTS]),
            minify=True,
        )
        controller = RecordingController(
            config, POLICY, transport=endpoint.transport, interactive=False, stop_after=1
        )

        asyncio.run(controller.start(install_signal_handlers=False))

        # One reachability check plus one cycle fetch
        assert len(endpoint.requests) == 2
        full = (tmp_path / "openapi" / "backend_openapi.json").read_bytes()
        outline = (tmp_path / "openapi" / "outline.json").read_bytes()
        assert b"\n" not in full and b"\n" not in outline
        assert list(orjson.loads(full)) == ["paths", "components"]
        assert orjson.loads(outline)["paths"]["/health"]["get"]["query"] == ["x"]

    def test_failed_cycle_keeps_previous_file(
        self, tmp_path: Path, scripted_endpoint: Any, health_doc: dict
    ) -> None:
        target = tmp_path / "openapi" / "backend_openapi.json"
        target.parent.mkdir()
        target.write_bytes(b'{"previous": true}')
        endpoint = scripted_endpoint([health_doc, {"no": "paths"}])
        config = make_config(tmp_path, projection=ProjectionRequest.reduce([ReduceKey.PATHS]))
        controller = RecordingController(
            config, POLICY, transport=endpoint.transport, interactive=False, stop_after=2
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert state.failure_streak == 2
        assert target.read_bytes() == b'{"previous": true}'

    def test_redirect_loop_is_a_cycle_failure(self, tmp_path: Path, scripted_endpoint: Any) -> None:
        endpoint = scripted_endpoint([httpx.Response(302, headers={"Location": URL})])
        controller = RecordingController(
            make_config(tmp_path), POLICY, transport=endpoint.transport, interactive=False, stop_after=2
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert state.cycles == 2
        assert state.failure_streak == 2
        assert controller.delays == [2000, 4000]
        assert not (tmp_path / "openapi").exists()

    def test_success_delay_respects_min_interval(
        self, tmp_path: Path, scripted_endpoint: Any, health_doc: dict
    ) -> None:
        endpoint = scripted_endpoint([health_doc])
        policy = WatchPolicy(interval_ms=1, min_interval_ms=250)
        controller = RecordingController(
            make_config(tmp_path), policy, transport=endpoint.transport, interactive=False, stop_after=2
        )

        assert controller.state.interval_ms == 250
        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert controller.delays == [250, 250]
        assert state.interval_ms == 250


class TestUrlResolution:
    def test_prompts_once_and_keeps_replacement(
        self, tmp_path: Path, scripted_endpoint: Any
    ) -> None:
        endpoint = scripted_endpoint([httpx.ConnectError("refused")])
        prompts: list[str] = []

        def prompt(current: str) -> str | None:
            prompts.append(current)
            return "http://replacement.test:8080/openapi.json"

        controller = RecordingController(
            make_config(tmp_path, url_from_default=True),
            POLICY,
            transport=endpoint.transport,
            prompt=prompt,
            interactive=True,
            stop_after=3,
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert prompts == [URL]
        assert state.prompted
        assert state.resolved_url == "http://replacement.test:8080/openapi.json"
        assert state.failure_streak == 3
        assert [r.url.host for r in endpoint.requests] == ["api.test"] + ["replacement.test"] * 3

    def test_empty_answer_keeps_configured_url(self, tmp_path: Path, scripted_endpoint: Any) -> None:
        endpoint = scripted_endpoint([httpx.ConnectError("refused")])
        controller = RecordingController(
            make_config(tmp_path, url_from_default=True),
            POLICY,
            transport=endpoint.transport,
            prompt=lambda current: None,
            interactive=True,
            stop_after=1,
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert state.prompted
        assert state.resolved_url == URL

    def test_no_prompt_without_terminal(self, tmp_path: Path, scripted_endpoint: Any) -> None:
        endpoint = scripted_endpoint([httpx.ConnectError("refused")])

        def prompt(current: str) -> str | None:
            raise AssertionError("prompt must not be shown")

        controller = RecordingController(
            make_config(tmp_path, url_from_default=True),
            POLICY,
            transport=endpoint.transport,
            prompt=prompt,
            interactive=False,
            stop_after=2,
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert not state.prompted
        assert state.resolved_url == URL

    def test_no_prompt_when_reachable(self, tmp_path: Path, scripted_endpoint: Any, health_doc: dict) -> None:
        endpoint = scripted_endpoint([health_doc])

        def prompt(current: str) -> str | None:
            raise AssertionError("prompt must not be shown")

        controller = RecordingController(
            make_config(tmp_path, url_from_default=True),
            POLICY,
            transport=endpoint.transport,
            prompt=prompt,
            interactive=True,
            stop_after=1,
        )

        assert not asyncio.run(controller.start(install_signal_handlers=False)).prompted

    def test_no_prompt_for_explicit_url(self, tmp_path: Path, scripted_endpoint: Any) -> None:
        endpoint = scripted_endpoint([httpx.ConnectError("refused")])

        def prompt(current: str) -> str | None:
            raise AssertionError("prompt must not be shown")

        controller = RecordingController(
            make_config(tmp_path, url_from_default=False),
            POLICY,
            transport=endpoint.transport,
            prompt=prompt,
            interactive=True,
            stop_after=2,
        )

        state = asyncio.run(controller.start(install_signal_handlers=False))

        assert not state.prompted
        assert state.resolved_url == URL
        assert state.failure_streak == 2


class TestCancellation:
    def test_shutdown_during_wait_is_prompt(
        self, tmp_path: Path, scripted_endpoint: Any, health_doc: dict
    ) -> None:
        endpoint = scripted_endpoint([health_doc])
        policy = WatchPolicy(interval_ms=60_000)

        async def run() -> Any:
            controller = WatchController(
                make_config(tmp_path), policy, transport=endpoint.transport, interactive=False
            )
            asyncio.get_running_loop().call_later(0.3, controller.request_shutdown)
            return await asyncio.wait_for(controller.start(install_signal_handlers=False), timeout=5)

        state = asyncio.run(run())

        assert state.cancelled
        assert state.cycles == 1
        assert (tmp_path / "openapi" / "backend_openapi.json").exists()

    def test_shutdown_abandons_in_flight_fetch(self, tmp_path: Path, health_doc: dict) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls > 1:
                await asyncio.sleep(60)
            return httpx.Response(200, content=orjson.dumps(health_doc))

        async def run() -> Any:
            controller = WatchController(
                make_config(tmp_path),
                POLICY,
                transport=httpx.MockTransport(handler),
                interactive=False,
            )
            asyncio.get_running_loop().call_later(0.3, controller.request_shutdown)
            return await asyncio.wait_for(controller.start(install_signal_handlers=False), timeout=5)

        state = asyncio.run(run())

        assert state.cancelled
        assert state.failure_streak == 0
        out_dir = tmp_path / "openapi"
        assert not out_dir.exists() or list(out_dir.iterdir()) == []
