"""Run loop coordinating watches and tails.

This module coordinates:
- Namespace and resource query resolution
- Batch mode: list targets once and tail them with bounded concurrency
- Follow mode: one watch per namespace, one supervised retry loop per target
- A live budget of concurrent log requests
- Shutdown: every watch and tail task belongs to one task group, so
  cancelling the run reaches all of them
"""

import asyncio
import logging
import re
from dataclasses import dataclass

from kutail.client import ClusterClient, KubeClientError
from kutail.config import RETRY_BURST, Config
from kutail.exceptions import ConfigError, MaxLogRequestsError
from kutail.file_tail import FileTail
from kutail.models import Target
from kutail.resource import POD, parse_resource
from kutail.tail import ResumeRequest, Tail
from kutail.target import TargetFilter
from kutail.utils import RateLimiter
from kutail.watch import list_targets, watch_targets


logger = logging.getLogger(__name__)


class TailRegistry:
    """The tails currently open in a run, keyed by target ID."""

    def __init__(self) -> None:
        self._tails: dict[str, Tail] = {}

    def add(self, tail: Tail) -> None:
        self._tails[tail.target.id] = tail

    def remove(self, tail: Tail) -> None:
        """Forget ``tail`` unless a newer tail for the same target replaced it."""
        if self._tails.get(tail.target.id) is tail:
            del self._tails[tail.target.id]

    def get(self, target_id: str) -> Tail | None:
        return self._tails.get(target_id)

    def close_all(self) -> None:
        """Close every open tail."""
        for tail in list(self._tails.values()):
            tail.close()
        self._tails.clear()

    def __len__(self) -> int:
        return len(self._tails)


@dataclass(slots=True)
class NamespaceQuery:
    """The selectors used to list or watch pods in one namespace."""

    namespace: str
    label_selector: str | None
    field_selector: str | None


class Runner:
    """Reconciles cluster state into running tails.

    Attributes:
        config: The run configuration.
        client: The cluster client.
        registry: The tails currently open.
        target_filter: The filter shared by every namespace of the run.

    Example:
        async with KubeClient.create() as kube:
            await Runner(config, kube).run()
    """

    def __init__(
        self,
        config: Config,
        client: ClusterClient,
        registry: TailRegistry | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.registry = registry if registry is not None else TailRegistry()
        self.target_filter: TargetFilter | None = None
        self._num_requests = 0

    @property
    def num_requests(self) -> int:
        """The number of log requests currently in flight (follow mode)."""
        return self._num_requests

    async def run(self) -> None:
        """Run until all tails finish (batch) or until cancelled or a fatal error (follow).

        Raises:
            ConfigError: For invalid configuration, before anything starts.
            LostWatchError: If a pod watch ends unexpectedly.
            MaxLogRequestsError: If too many log requests are open at once.
        """
        if self.config.stdin:
            file_tail = FileTail(
                self.config.renderer,
                self.config.tail_options(),
                self.config.in_stream,
                self.config.out,
                self.config.err_out,
            )
            await file_tail.run()
            return

        if self.config.max_log_requests < 1:
            raise ConfigError("max-log-requests must be at least 1")

        namespaces = await self.resolve_namespaces()
        pod_query, queries = await self._resolve_queries(namespaces)
        self.target_filter = TargetFilter(self.config.target_filter_config(pod_query))

        try:
            if self.config.follow:
                await self._run_follow(queries)
            else:
                await self._run_batch(queries)
        except BaseExceptionGroup as group:
            raise _first_error(group) from None
        finally:
            self.registry.close_all()

    async def resolve_namespaces(self) -> list[str]:
        """Return the namespaces to tail; '' stands for all namespaces.

        Raises:
            ConfigError: If no namespace can be determined.
        """
        if self.config.all_namespaces:
            return [""]
        if self.config.namespaces:
            return self.config.namespaces

        namespace = await self.client.get_current_namespace()
        if not namespace:
            raise ConfigError("unable to get default namespace")
        return [namespace]

    async def _resolve_queries(
        self,
        namespaces: list[str],
    ) -> tuple[re.Pattern[str] | None, list[NamespaceQuery]]:
        if not self.config.resource:
            return None, [
                NamespaceQuery(ns, self.config.label_selector, self.config.field_selector)
                for ns in namespaces
            ]

        if self.config.label_selector:
            raise ConfigError("a resource query cannot be combined with --selector")

        matcher, name = parse_resource(self.config.resource)

        # pods may have no labels, so match the pod by name instead
        if matcher == POD:
            pod_query = re.compile(f"^{re.escape(name)}$")
            return pod_query, [
                NamespaceQuery(ns, None, self.config.field_selector) for ns in namespaces
            ]

        queries = []
        for ns in namespaces:
            selector = await self.client.get_resource_selector(ns, matcher, name)
            logger.debug(f"Resolved {matcher.name}/{name} in '{ns}' to selector '{selector}'")
            queries.append(NamespaceQuery(ns, selector, self.config.field_selector))
        return None, queries

    async def _run_batch(self, queries: list[NamespaceQuery]) -> None:
        assert self.target_filter is not None

        targets: list[Target] = []
        for query in queries:
            targets.extend(
                await list_targets(
                    self.client,
                    query.namespace,
                    query.label_selector,
                    query.field_selector,
                    self.target_filter,
                )
            )

        semaphore = asyncio.Semaphore(self.config.max_log_requests)
        async with asyncio.TaskGroup() as tg:
            for target in targets:
                tg.create_task(self._tail_once(target, semaphore), name=f"tail-{target.id}")

    async def _tail_once(self, target: Target, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            tail = self._new_tail(target)
            self.registry.add(tail)
            try:
                await tail.start()
            finally:
                tail.close()
                self.registry.remove(tail)

    async def _run_follow(self, queries: list[NamespaceQuery]) -> None:
        async with asyncio.TaskGroup() as tg:
            for query in queries:
                tg.create_task(
                    self._follow_namespace(query, tg),
                    name=f"watch-{query.namespace or 'all'}",
                )

    async def _follow_namespace(self, query: NamespaceQuery, tg: asyncio.TaskGroup) -> None:
        assert self.target_filter is not None

        async for target in watch_targets(
            self.client,
            query.namespace,
            query.label_selector,
            query.field_selector,
            self.target_filter,
        ):
            self._num_requests += 1
            if self._num_requests > self.config.max_log_requests:
                raise MaxLogRequestsError(self.config.max_log_requests)

            tg.create_task(self._tail_target(target), name=f"tail-{target.id}")

    async def _tail_target(self, target: Target) -> None:
        """Tail a target, retrying disconnects while the target is still active."""
        assert self.target_filter is not None

        limiter = RateLimiter(self.config.retry_interval, RETRY_BURST)
        resume_request: ResumeRequest | None = None

        try:
            while True:
                await limiter.wait()

                tail = self._new_tail(target)
                self.registry.add(tail)
                try:
                    if resume_request is None:
                        await tail.start()
                    else:
                        await tail.resume(resume_request)
                except KubeClientError as e:
                    error: KubeClientError | None = e
                else:
                    error = None
                finally:
                    tail.close()
                    self.registry.remove(tail)

                if error is None:
                    return

                if not self.target_filter.is_active(target):
                    print(f"failed to tail: {error}", file=self.config.err_out)
                    logger.info(f"Target {target.id} is gone, not retrying")
                    return

                print(f"failed to tail: {error}, will retry", file=self.config.err_out)
                request = tail.get_resume_request()
                if request is not None:
                    resume_request = request
        finally:
            self._num_requests -= 1

    def _new_tail(self, target: Target) -> Tail:
        return Tail(
            self.client,
            target,
            self.config.renderer,
            self.config.palette,
            self.config.tail_options(),
            self.config.out,
            self.config.err_out,
            diff_container=self.config.diff_container,
        )


def _first_error(group: BaseExceptionGroup) -> BaseException:
    error: BaseException = group.exceptions[0]
    while isinstance(error, BaseExceptionGroup):
        error = error.exceptions[0]
    return error


async def run(config: Config, client: ClusterClient) -> None:
    """Run kutail with the given configuration and cluster client."""
    await Runner(config, client).run()
