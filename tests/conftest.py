"""Pytest configuration and shared fixtures for kutail tests."""

import asyncio
import io
from collections.abc import AsyncIterator, Callable
from types import SimpleNamespace

import pytest

from kutail.client import LogOptions
from kutail.color import ColorPalette
from kutail.config import Config
from kutail.models import ContainerStatus, EventType, PodCondition, PodInfo, Target
from kutail.resource import ResourceMatcher
from kutail.template import build_renderer


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "e2e: End-to-end tests requiring a real Kubernetes cluster",
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip e2e tests unless explicitly requested."""
    if not config.getoption("-m", default=""):
        skip_e2e = pytest.mark.skip(
            reason="E2E tests require -m e2e flag and a real cluster"
        )
        for item in items:
            if "e2e" in item.keywords:
                item.add_marker(skip_e2e)


# ============================================================================
# Fake Cluster
# ============================================================================


class FakeClusterClient:
    """In-memory ClusterClient driven by scripted pods, events and logs.

    Log streams are scripted per target ID ("ns/pod/container") as a list
    of attempts; each ``stream_logs`` call consumes the next attempt. An
    attempt is a list of lines, where an exception instance is raised at
    that point of the stream.
    """

    def __init__(self) -> None:
        self.current_namespace = "default"
        self.pods: dict[str, list[PodInfo]] = {}
        self.events: dict[str, list[tuple[EventType, PodInfo]]] = {}
        self.selectors: dict[tuple[str, str, str], str] = {}
        self.logs: dict[str, list[list]] = {}
        self.log_requests: list[tuple[str, str, LogOptions]] = []
        self.list_calls: list[tuple[str, str | None, str | None]] = []
        # keep watches and log streams open after their scripted items
        self.hold_watch = False
        self.hold_logs = False
        self._live_events: dict[str, asyncio.Queue] = {}

    def add_logs(self, target_id: str, *lines) -> None:
        self.logs.setdefault(target_id, []).append(list(lines))

    def push_event(self, namespace: str, event_type: EventType, pod: PodInfo) -> None:
        """Deliver an event to a held watch of the namespace."""
        self._live_queue(namespace).put_nowait((event_type, pod))

    def _live_queue(self, namespace: str) -> asyncio.Queue:
        return self._live_events.setdefault(namespace, asyncio.Queue())

    async def list_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[PodInfo]:
        self.list_calls.append((namespace, label_selector, field_selector))
        return list(self.pods.get(namespace, []))

    async def watch_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> AsyncIterator[tuple[EventType, PodInfo]]:
        for event in self.events.get(namespace, []):
            yield event
            await asyncio.sleep(0)
        if self.hold_watch:
            queue = self._live_queue(namespace)
            while True:
                yield await queue.get()

    async def stream_logs(
        self,
        namespace: str,
        pod: str,
        options: LogOptions,
    ) -> AsyncIterator[str]:
        self.log_requests.append((namespace, pod, options))
        attempts = self.logs.get(f"{namespace}/{pod}/{options.container}", [])
        lines = attempts.pop(0) if attempts else []
        for line in lines:
            if isinstance(line, BaseException):
                raise line
            yield line
        if self.hold_logs:
            await asyncio.Event().wait()

    async def get_resource_selector(
        self,
        namespace: str,
        matcher: ResourceMatcher,
        name: str,
    ) -> str:
        return self.selectors[(namespace, matcher.name, name)]

    async def get_current_namespace(self) -> str:
        return self.current_namespace


@pytest.fixture
def fake_client() -> FakeClusterClient:
    """Create an empty fake cluster."""
    return FakeClusterClient()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def running(name: str, container_id: str) -> ContainerStatus:
    return ContainerStatus(name=name, container_id=container_id, running=True)


def waiting(name: str, last_terminated_container_id: str = "") -> ContainerStatus:
    return ContainerStatus(
        name=name,
        waiting=True,
        last_terminated_container_id=last_terminated_container_id,
    )


def terminated(name: str, container_id: str) -> ContainerStatus:
    return ContainerStatus(
        name=name,
        container_id=container_id,
        terminated=True,
        terminated_container_id=container_id,
    )


@pytest.fixture
def make_pod() -> Callable[..., PodInfo]:
    """Return a builder for PodInfo objects."""

    def build(
        name: str,
        *containers: ContainerStatus,
        namespace: str = "default",
        uid: str | None = None,
        init: list[ContainerStatus] | None = None,
        ephemeral: list[ContainerStatus] | None = None,
        conditions: dict[str, str] | None = None,
        owner_kinds: list[str] | None = None,
        node_name: str = "node-1",
    ) -> PodInfo:
        return PodInfo(
            namespace=namespace,
            name=name,
            uid=uid or f"uid-{name}",
            node_name=node_name,
            phase="Running",
            owner_kinds=owner_kinds or [],
            conditions=[PodCondition(t, s) for t, s in (conditions or {}).items()],
            init_container_statuses=init or [],
            container_statuses=list(containers),
            ephemeral_container_statuses=ephemeral or [],
        )

    return build


@pytest.fixture
def status() -> SimpleNamespace:
    """Builders for running, waiting and terminated container statuses."""
    return SimpleNamespace(running=running, waiting=waiting, terminated=terminated)


@pytest.fixture
def sample_target() -> Target:
    """Create a sample Target for testing."""
    return Target(node="node-1", namespace="default", pod="web-abc123", container="nginx")


@pytest.fixture
def plain_palette() -> ColorPalette:
    """A palette that never emits ANSI sequences."""
    return ColorPalette(enabled=False)


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def err_out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def make_config(plain_palette: ColorPalette, out: io.StringIO, err_out: io.StringIO):
    """Return a builder for Configs writing to in-memory streams, without colors."""

    def build(**overrides) -> Config:
        values = {
            "palette": plain_palette,
            "renderer": build_renderer("default", None, plain_palette),
            "out": out,
            "err_out": err_out,
            "retry_interval": 0.0,
        }
        values.update(overrides)
        return Config(**values)

    return build
