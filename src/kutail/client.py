"""Asynchronous Kubernetes client wrapper for kutail.

This module provides the cluster operations the tailing engine needs:
- Loading kubeconfig and resolving the current namespace
- Listing and watching pods, parsed into PodInfo snapshots
- Streaming container logs with timestamps
- Resolving the pod selector of a workload resource

Uses kubernetes_asyncio for true async I/O operations.
"""

import asyncio
import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, Self

import aiohttp
from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch

from kutail.exceptions import ConfigError, KutailError
from kutail.models import ContainerStatus, EventType, PodCondition, PodInfo
from kutail.resource import (
    DAEMON_SET,
    DEPLOYMENT,
    JOB,
    REPLICA_SET,
    REPLICATION_CONTROLLER,
    SERVICE,
    STATEFUL_SET,
    ResourceMatcher,
    selector_from_labels,
)


logger = logging.getLogger(__name__)

WATCH_RETRY_DELAY = 1.0

# Seconds added to a since_time window to absorb clock skew with the API server
SINCE_TIME_MARGIN = 5


class KubeClientError(KutailError):
    """Base exception for KubeClient errors."""

    pass


class NamespaceNotFoundError(KubeClientError):
    """Raised when a namespace does not exist."""

    pass


class PodNotFoundError(KubeClientError):
    """Raised when a pod does not exist or was deleted."""

    pass


class PermissionDeniedError(KubeClientError):
    """Raised when the client lacks permission for an operation."""

    pass


@dataclass(slots=True)
class LogOptions:
    """Parameters of a single log request.

    Attributes:
        container: The container to read logs from.
        follow: Whether to keep the stream open for new lines.
        timestamps: Whether each line is prefixed with its RFC3339Nano timestamp.
        since_seconds: Only return logs newer than this many seconds.
        since_time: Only return logs at or after this time; wins over since_seconds.
        tail_lines: Number of lines from the end of the log, None for all.
    """

    container: str
    follow: bool = False
    timestamps: bool = True
    since_seconds: int | None = None
    since_time: datetime | None = None
    tail_lines: int | None = None


class ClusterClient(Protocol):
    """The cluster operations consumed by the watcher, tails and runner."""

    async def list_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[PodInfo]:
        ...

    def watch_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> AsyncIterator[tuple[EventType, PodInfo]]:
        ...

    def stream_logs(
        self,
        namespace: str,
        pod: str,
        options: LogOptions,
    ) -> AsyncIterator[str]:
        ...

    async def get_resource_selector(
        self,
        namespace: str,
        matcher: ResourceMatcher,
        name: str,
    ) -> str:
        ...

    async def get_current_namespace(self) -> str:
        ...


class KubeClient:
    """Asynchronous Kubernetes client for log operations.

    Attributes:
        core_api: The Kubernetes CoreV1Api client.
        apps_api: The Kubernetes AppsV1Api client.
        batch_api: The Kubernetes BatchV1Api client.

    Example:
        async with KubeClient.create() as kube:
            pods = await kube.list_pods("default")
            async for line in kube.stream_logs("default", "web-1", LogOptions("nginx")):
                print(line)
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        kubeconfig: str | None = None,
        context: str | None = None,
    ) -> None:
        """Initialize the client with an API client instance.

        Args:
            api_client: The kubernetes_asyncio ApiClient instance.
            kubeconfig: The kubeconfig file the client was created from.
            context: The kubeconfig context the client was created for.
        """
        self._api_client = api_client
        self._kubeconfig = kubeconfig
        self._context = context
        self.core_api = client.CoreV1Api(api_client)
        self.apps_api = client.AppsV1Api(api_client)
        self.batch_api = client.BatchV1Api(api_client)

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        kubeconfig: str | None = None,
        context: str | None = None,
    ) -> AsyncIterator[Self]:
        """Create and initialize a KubeClient from kubeconfig.

        Args:
            kubeconfig: Path to a kubeconfig file, defaults to KUBECONFIG or ~/.kube/config.
            context: Kubeconfig context to use, defaults to the current context.

        Yields:
            An initialized KubeClient instance.

        Raises:
            KubeClientError: If kubeconfig cannot be loaded.
        """
        try:
            await config.load_kube_config(config_file=kubeconfig, context=context)
        except Exception as e:
            raise KubeClientError(f"Failed to load kubeconfig: {e}") from e

        api_client = client.ApiClient()
        try:
            yield cls(api_client, kubeconfig=kubeconfig, context=context)
        finally:
            await api_client.close()

    async def get_current_namespace(self) -> str:
        """Get the namespace from the kubeconfig context.

        Returns:
            The namespace from the context, or 'default' if not set.
        """
        try:
            contexts, active_context = await asyncio.to_thread(
                config.list_kube_config_contexts, config_file=self._kubeconfig
            )
        except Exception as e:
            logger.debug(f"Could not get namespace from context: {e}")
            return "default"

        if self._context:
            active_context = next((c for c in contexts if c.get("name") == self._context), None)

        if active_context and "namespace" in active_context.get("context", {}):
            return active_context["context"]["namespace"]

        return "default"

    async def list_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[PodInfo]:
        """List pods in a namespace, or in all namespaces when it is empty.

        Raises:
            NamespaceNotFoundError: If the namespace does not exist.
            PermissionDeniedError: If access to the namespace is denied.
            KubeClientError: For other API errors.
        """
        try:
            response = await self._list_pod_func(namespace)(
                **self._list_kwargs(namespace, label_selector, field_selector)
            )
        except ApiException as e:
            if e.status == 404:
                raise NamespaceNotFoundError(f"Namespace '{namespace}' not found") from e
            if e.status == 403:
                raise PermissionDeniedError(
                    f"Permission denied for namespace '{namespace}'"
                ) from e
            raise KubeClientError(f"Failed to list pods: {e}") from e

        return [self._parse_pod(item, namespace) for item in response.items]

    async def watch_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> AsyncIterator[tuple[EventType, PodInfo]]:
        """Watch pod changes, reconnecting from the last resource version.

        Yields tuples of (event_type, pod_info) where event_type is one of
        'ADDED', 'MODIFIED', 'DELETED'. A 410 Gone restarts the watch from
        a fresh state, which replays current pods as ADDED events.
        Throttling (429), server errors (5xx) and connection errors
        reconnect from the last resource version after a short delay.

        Raises:
            PermissionDeniedError: If access is denied.
            KubeClientError: For other API errors, such as 401 or 404.
        """
        resource_version: str | None = None

        while True:
            watch = Watch()
            kwargs = self._list_kwargs(namespace, label_selector, field_selector)
            if resource_version:
                kwargs["resource_version"] = resource_version

            try:
                async for event in watch.stream(self._list_pod_func(namespace), **kwargs):
                    event_type = event["type"]
                    if event_type not in ("ADDED", "MODIFIED", "DELETED"):
                        continue

                    pod = event["object"]
                    resource_version = pod.metadata.resource_version
                    yield event_type, self._parse_pod(pod, namespace)

                logger.debug(f"Watch for namespace '{namespace}' ended, reconnecting")

            except ApiException as e:
                if e.status == 410:
                    logger.debug("Watch expired, re-establishing from current state")
                    resource_version = None
                    continue
                if e.status == 403:
                    raise PermissionDeniedError(
                        f"Permission denied to watch pods in namespace '{namespace}'"
                    ) from e
                if not _is_transient(e.status):
                    raise KubeClientError(f"Watch failed: {e}") from e
                logger.warning(
                    f"Watch for namespace '{namespace}' failed with status {e.status}, reconnecting"
                )
                await asyncio.sleep(WATCH_RETRY_DELAY)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Watch connection error for namespace '{namespace}': {e}")
                await asyncio.sleep(WATCH_RETRY_DELAY)

            finally:
                await watch.close()

    async def stream_logs(
        self,
        namespace: str,
        pod: str,
        options: LogOptions,
    ) -> AsyncIterator[str]:
        """Stream log lines of one container.

        The API has no sinceTime parameter, so ``since_time`` is sent as a
        seconds window rounded up plus a skew margin; callers drop lines
        older than it.

        Yields:
            Log lines without the trailing newline.

        Raises:
            PodNotFoundError: If the pod does not exist.
            PermissionDeniedError: If access is denied.
            KubeClientError: For other errors.
        """
        kwargs: dict[str, Any] = {
            "name": pod,
            "namespace": namespace,
            "container": options.container,
            "follow": options.follow,
            "timestamps": options.timestamps,
            "_preload_content": False,
        }

        if options.since_time is not None:
            elapsed = (datetime.now(timezone.utc) - options.since_time).total_seconds()
            kwargs["since_seconds"] = max(1, math.ceil(elapsed) + SINCE_TIME_MARGIN)
        elif options.since_seconds is not None and options.since_seconds > 0:
            kwargs["since_seconds"] = options.since_seconds

        if options.tail_lines is not None and options.tail_lines >= 0:
            kwargs["tail_lines"] = options.tail_lines

        try:
            response = await self.core_api.read_namespaced_pod_log(**kwargs)
        except ApiException as e:
            if e.status == 404:
                raise PodNotFoundError(f"Pod {namespace}/{pod} not found") from e
            if e.status == 403:
                raise PermissionDeniedError(
                    f"Permission denied for pod {namespace}/{pod}"
                ) from e
            raise KubeClientError(
                f"Failed to stream logs from {namespace}/{pod}/{options.container}: {e}"
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise KubeClientError(
                f"Failed to connect to log stream of {namespace}/{pod}/{options.container}: {e}"
            ) from e

        try:
            async for line in response.content:
                if isinstance(line, bytes):
                    line = line.decode("utf-8", errors="replace")
                yield line.rstrip("\n")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise KubeClientError(
                f"Log stream from {namespace}/{pod}/{options.container} broke: {e}"
            ) from e
        finally:
            response.release()

    async def get_resource_selector(
        self,
        namespace: str,
        matcher: ResourceMatcher,
        name: str,
    ) -> str:
        """Return the label selector matching the pods of a workload resource.

        Raises:
            ConfigError: If the resource kind cannot be resolved to a selector.
            KubeClientError: If the resource cannot be read.
        """
        if not namespace:
            raise ConfigError(f"{matcher.name}/{name} requires a namespace")

        readers = {
            REPLICATION_CONTROLLER.name: self.core_api.read_namespaced_replication_controller,
            SERVICE.name: self.core_api.read_namespaced_service,
            DAEMON_SET.name: self.apps_api.read_namespaced_daemon_set,
            DEPLOYMENT.name: self.apps_api.read_namespaced_deployment,
            REPLICA_SET.name: self.apps_api.read_namespaced_replica_set,
            STATEFUL_SET.name: self.apps_api.read_namespaced_stateful_set,
            JOB.name: self.batch_api.read_namespaced_job,
        }
        reader = readers.get(matcher.name)
        if reader is None:
            raise ConfigError(f"resource type {matcher.name} is not supported")

        try:
            obj = await reader(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                raise KubeClientError(
                    f"{matcher.name} '{name}' not found in namespace '{namespace}'"
                ) from e
            raise KubeClientError(f"Failed to get {matcher.name} '{name}': {e}") from e

        selector = obj.spec.selector
        if selector is None:
            raise ConfigError(f"{matcher.name} '{name}' has no pod selector")

        # services and replication controllers use a plain label map
        if isinstance(selector, dict):
            return selector_from_labels(selector, [])

        expressions = [
            (expr.key, expr.operator, list(expr.values or []))
            for expr in (selector.match_expressions or [])
        ]
        return selector_from_labels(selector.match_labels or {}, expressions)

    def _list_pod_func(self, namespace: str):
        if namespace:
            return self.core_api.list_namespaced_pod
        return self.core_api.list_pod_for_all_namespaces

    @staticmethod
    def _list_kwargs(
        namespace: str,
        label_selector: str | None,
        field_selector: str | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if namespace:
            kwargs["namespace"] = namespace
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        return kwargs

    def _parse_pod(self, pod: client.V1Pod, namespace: str) -> PodInfo:
        """Parse a V1Pod object into a PodInfo dataclass.

        Args:
            pod: The Kubernetes V1Pod object.
            namespace: The namespace (for fallback).

        Returns:
            A PodInfo object with parsed data.
        """
        metadata = pod.metadata
        spec = pod.spec
        status = pod.status

        conditions: list[PodCondition] = []
        if status and status.conditions:
            conditions = [PodCondition(type=c.type, status=c.status) for c in status.conditions]

        return PodInfo(
            namespace=metadata.namespace or namespace,
            name=metadata.name,
            uid=metadata.uid or "",
            node_name=(spec.node_name or "") if spec else "",
            phase=status.phase if status and status.phase else "Unknown",
            owner_kinds=[ref.kind for ref in metadata.owner_references or []],
            conditions=conditions,
            init_container_statuses=_parse_statuses(status.init_container_statuses if status else None),
            container_statuses=_parse_statuses(status.container_statuses if status else None),
            ephemeral_container_statuses=_parse_statuses(
                status.ephemeral_container_statuses if status else None
            ),
            labels=dict(metadata.labels) if metadata.labels else {},
        )


def _is_transient(status: int | None) -> bool:
    """Return True for API statuses worth retrying (throttling and server errors)."""
    return status is not None and (status == 429 or status >= 500)


def _parse_statuses(statuses: list[client.V1ContainerStatus] | None) -> list[ContainerStatus]:
    result: list[ContainerStatus] = []
    for cs in statuses or []:
        state = cs.state
        last_terminated = cs.last_state.terminated if cs.last_state else None
        result.append(
            ContainerStatus(
                name=cs.name,
                container_id=cs.container_id or "",
                running=bool(state and state.running),
                waiting=bool(state and state.waiting),
                terminated=bool(state and state.terminated),
                terminated_container_id=(
                    state.terminated.container_id or ""
                    if state and state.terminated
                    else ""
                ),
                last_terminated_container_id=(
                    last_terminated.container_id or "" if last_terminated else ""
                ),
            )
        )
    return result
