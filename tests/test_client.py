"""Tests for KubeClient watch reconnects and log request parameters.

The kubernetes_asyncio Watch is replaced by a scripted fake, so these tests
run without a cluster.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from kubernetes_asyncio.client import ApiException, V1ObjectMeta, V1Pod

from kutail.client import (
    SINCE_TIME_MARGIN,
    KubeClient,
    KubeClientError,
    LogOptions,
    PermissionDeniedError,
)


def pod_event(event_type: str, name: str, resource_version: str) -> dict:
    metadata = V1ObjectMeta(
        name=name,
        namespace="default",
        uid=f"uid-{name}",
        resource_version=resource_version,
    )
    return {"type": event_type, "object": V1Pod(metadata=metadata)}


@pytest.fixture
def kube() -> KubeClient:
    return KubeClient(MagicMock())


@pytest.fixture
def scripted_watch(monkeypatch):
    """Patch Watch so each connection replays the next script.

    A script is a list of events and exceptions. Once the scripts run out,
    the stream blocks like an idle watch.
    """
    scripts: list[list] = []
    calls: list[dict] = []

    class ScriptedWatch:
        async def stream(self, func, **kwargs):
            calls.append(kwargs)
            if not scripts:
                await asyncio.Event().wait()
            for item in scripts.pop(0):
                if isinstance(item, BaseException):
                    raise item
                yield item

        async def close(self) -> None:
            pass

    monkeypatch.setattr("kutail.client.Watch", ScriptedWatch)
    monkeypatch.setattr("kutail.client.WATCH_RETRY_DELAY", 0)
    return SimpleNamespace(scripts=scripts, calls=calls)


async def take(kube: KubeClient, count: int) -> list[tuple[str, str]]:
    """Read count events from a watch on the default namespace."""
    events = kube.watch_pods("default")
    seen = []
    try:
        for _ in range(count):
            event_type, pod = await asyncio.wait_for(anext(events), 2)
            seen.append((event_type, pod.name))
    finally:
        await events.aclose()
    return seen


# ============================================================================
# Watch Reconnects
# ============================================================================


class TestWatchPods:
    """Tests for KubeClient.watch_pods."""

    @pytest.mark.asyncio
    async def test_parses_events(self, kube, scripted_watch) -> None:
        scripted_watch.scripts.append([pod_event("ADDED", "web-1", "5")])

        assert await take(kube, 1) == [("ADDED", "web-1")]
        assert scripted_watch.calls == [{"namespace": "default"}]

    @pytest.mark.asyncio
    async def test_ended_stream_resumes_from_last_version(self, kube, scripted_watch) -> None:
        scripted_watch.scripts.append([pod_event("ADDED", "web-1", "5")])
        scripted_watch.scripts.append([pod_event("MODIFIED", "web-1", "6")])

        assert await take(kube, 2) == [("ADDED", "web-1"), ("MODIFIED", "web-1")]
        assert scripted_watch.calls[1]["resource_version"] == "5"

    @pytest.mark.asyncio
    async def test_gone_resets_resource_version(self, kube, scripted_watch) -> None:
        scripted_watch.scripts.append([pod_event("ADDED", "web-1", "5")])
        scripted_watch.scripts.append([ApiException(status=410)])
        scripted_watch.scripts.append([pod_event("ADDED", "web-1", "9")])

        assert await take(kube, 2) == [("ADDED", "web-1"), ("ADDED", "web-1")]
        assert scripted_watch.calls[1]["resource_version"] == "5"
        assert "resource_version" not in scripted_watch.calls[2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_transient_api_errors_reconnect(
        self, kube, scripted_watch, caplog, status: int
    ) -> None:
        """Test that throttling and server errors keep the watch alive."""
        scripted_watch.scripts.append([pod_event("ADDED", "web-1", "5")])
        scripted_watch.scripts.append([ApiException(status=status)])
        scripted_watch.scripts.append([pod_event("ADDED", "web-2", "7")])

        with caplog.at_level(logging.WARNING, logger="kutail.client"):
            assert await take(kube, 2) == [("ADDED", "web-1"), ("ADDED", "web-2")]

        assert scripted_watch.calls[2]["resource_version"] == "5"
        assert f"failed with status {status}" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientConnectionError("connection reset"), asyncio.TimeoutError()],
    )
    async def test_connection_errors_reconnect(self, kube, scripted_watch, error) -> None:
        scripted_watch.scripts.append([error])
        scripted_watch.scripts.append([pod_event("ADDED", "web-1", "5")])

        assert await take(kube, 1) == [("ADDED", "web-1")]
        assert len(scripted_watch.calls) == 2

    @pytest.mark.asyncio
    async def test_forbidden_is_fatal(self, kube, scripted_watch) -> None:
        scripted_watch.scripts.append([ApiException(status=403)])

        with pytest.raises(PermissionDeniedError, match="Permission denied"):
            await take(kube, 1)
        assert len(scripted_watch.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 404])
    async def test_client_errors_are_fatal(self, kube, scripted_watch, status: int) -> None:
        scripted_watch.scripts.append([ApiException(status=status)])

        with pytest.raises(KubeClientError, match="Watch failed"):
            await take(kube, 1)
        assert len(scripted_watch.calls) == 1


# ============================================================================
# Log Requests
# ============================================================================


class FakeLogResponse:
    """Stands in for the raw aiohttp response of a log request."""

    def __init__(self, *lines: bytes) -> None:
        self.lines = lines
        self.released = False

    @property
    def content(self):
        async def iterate():
            for line in self.lines:
                yield line

        return iterate()

    def release(self) -> None:
        self.released = True


class TestStreamLogs:
    """Tests for KubeClient.stream_logs."""

    @pytest.mark.asyncio
    async def test_since_time_window_has_skew_margin(self, kube) -> None:
        """Test that a resume window reaches a few seconds before the cursor."""
        response = FakeLogResponse(b"2023-02-14T05:36:39Z one\n")
        kube.core_api = MagicMock()
        kube.core_api.read_namespaced_pod_log = AsyncMock(return_value=response)
        since_time = datetime.now(timezone.utc) - timedelta(seconds=10)

        options = LogOptions(container="nginx", follow=True, since_time=since_time)
        lines = [line async for line in kube.stream_logs("default", "web-1", options)]

        assert lines == ["2023-02-14T05:36:39Z one"]
        assert response.released
        kwargs = kube.core_api.read_namespaced_pod_log.call_args.kwargs
        assert 10 + SINCE_TIME_MARGIN <= kwargs["since_seconds"] <= 11 + SINCE_TIME_MARGIN
        assert kwargs["timestamps"] is True
        assert kwargs["container"] == "nginx"

    @pytest.mark.asyncio
    async def test_tail_lines_and_since_seconds(self, kube) -> None:
        kube.core_api = MagicMock()
        kube.core_api.read_namespaced_pod_log = AsyncMock(return_value=FakeLogResponse())

        options = LogOptions(container="nginx", since_seconds=300, tail_lines=10)
        assert [line async for line in kube.stream_logs("default", "web-1", options)] == []

        kwargs = kube.core_api.read_namespaced_pod_log.call_args.kwargs
        assert kwargs["since_seconds"] == 300
        assert kwargs["tail_lines"] == 10

    @pytest.mark.asyncio
    async def test_not_found(self, kube) -> None:
        kube.core_api = MagicMock()
        kube.core_api.read_namespaced_pod_log = AsyncMock(side_effect=ApiException(status=404))

        with pytest.raises(KubeClientError, match="not found"):
            async for _ in kube.stream_logs("default", "gone", LogOptions(container="nginx")):
                pass
