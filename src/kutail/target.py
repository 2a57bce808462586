"""Target filtering and container identity tracking.

The TargetFilter decides which (pod, container) pairs are loggable from
a pod's current status. It remembers the container ID last seen for each
target so that re-reported statuses do not start duplicate tails, while a
restarted container (new container ID) is tailed again.
"""

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from kutail.condition import Condition
from kutail.container_state import ContainerState, match_any
from kutail.models import ContainerStatus, PodInfo, Target


logger = logging.getLogger(__name__)

Visitor = Callable[[Target, bool], None]


@dataclass(slots=True)
class TargetState:
    """The pod UID and container ID last recorded for a target."""

    pod_uid: str
    container_id: str


@dataclass(slots=True)
class TargetFilterConfig:
    """Filtering rules applied to every observed pod.

    Attributes:
        pod_filter: Pods must match this pattern.
        exclude_pod_filter: Pods matching any of these are skipped.
        container_filter: Containers must match this pattern.
        exclude_container_filter: Containers matching any of these are skipped.
        condition: Optional pod condition that must hold.
        init_containers: Whether to include init containers.
        ephemeral_containers: Whether to include ephemeral containers.
        container_states: Accepted states for containers seen for the first time.
    """

    pod_filter: re.Pattern[str] = field(default_factory=lambda: re.compile(""))
    exclude_pod_filter: list[re.Pattern[str]] = field(default_factory=list)
    container_filter: re.Pattern[str] = field(default_factory=lambda: re.compile(""))
    exclude_container_filter: list[re.Pattern[str]] = field(default_factory=list)
    condition: Condition | None = None
    init_containers: bool = True
    ephemeral_containers: bool = True
    container_states: list[ContainerState] = field(
        default_factory=lambda: [ContainerState.RUNNING]
    )


class TargetFilter:
    """Turns pod observations into targets, deduplicating restarts.

    ``visit`` may be called concurrently with ``forget`` and ``is_active``
    from watches of different namespaces; the state map is guarded by a
    single lock.

    Example:
        target_filter = TargetFilter(TargetFilterConfig())
        target_filter.visit(pod, lambda target, found: print(target.id))
    """

    def __init__(self, config: TargetFilterConfig) -> None:
        self.config = config
        self._states: dict[str, TargetState] = {}
        self._lock = threading.Lock()

    def visit(self, pod: PodInfo, visitor: Visitor) -> None:
        """Pass the loggable targets of a pod to ``visitor``.

        The visitor receives each target together with whether the
        configured condition was found. Targets of a pod whose condition
        is not met are reported with False and the pod's state is forgotten.

        Args:
            pod: The observed pod.
            visitor: Callback receiving ``(target, condition_found)``.
        """
        if not self.config.pod_filter.search(pod.name):
            return
        if any(rex.search(pod.name) for rex in self.config.exclude_pod_filter):
            return

        condition_found = True
        if self.config.condition is not None:
            condition_found = self.config.condition.match(pod)

        # init containers first so they are tailed first in batch mode
        statuses: list[ContainerStatus] = []
        if self.config.init_containers:
            statuses.extend(pod.init_container_statuses)
        statuses.extend(pod.container_statuses)
        if self.config.ephemeral_containers:
            statuses.extend(pod.ephemeral_container_statuses)

        for status in statuses:
            if not self.config.container_filter.search(status.name):
                continue
            if any(rex.search(status.name) for rex in self.config.exclude_container_filter):
                continue

            target = Target(
                node=pod.node_name,
                namespace=pod.namespace,
                pod=pod.name,
                container=status.name,
            )

            if not condition_found:
                visitor(target, False)
                self.forget(pod.uid)
                continue

            if self._should_add(target, pod.uid, status):
                visitor(target, True)

    def _should_add(self, target: Target, pod_uid: str, status: ContainerStatus) -> bool:
        container_id = choose_container_id(status)

        with self._lock:
            last = self._states.get(target.id)
            self._states[target.id] = TargetState(pod_uid=pod_uid, container_id=container_id)

        if not container_id:
            # no container to retrieve logs from yet
            logger.debug(f"Container ID is empty: {target.id} ({status.phase})")
            return False

        if last is None:
            # state history before we started watching is unknown, so only
            # containers seen for the first time are filtered by state
            logger.debug(
                f"First observation of {target.id} ({status.phase}, {container_id})"
            )
            return match_any(self.config.container_states, status)

        if last.container_id == container_id:
            logger.debug(f"Container ID unchanged: {target.id} ({container_id})")
            return False

        logger.debug(
            f"Container ID changed: {target.id} "
            f"({last.container_id} -> {container_id})"
        )
        return True

    def forget(self, pod_uid: str) -> None:
        """Drop every target state recorded for the given pod UID."""
        with self._lock:
            stale = [
                target_id
                for target_id, state in self._states.items()
                if state.pod_uid == pod_uid
            ]
            for target_id in stale:
                logger.debug(f"Forget target state: {target_id}")
                del self._states[target_id]

    def is_active(self, target: Target) -> bool:
        """Return True if the target is tracked with a retrievable container."""
        with self._lock:
            last = self._states.get(target.id)
        return last is not None and last.container_id != ""


def choose_container_id(status: ContainerStatus) -> str:
    """Return the ID of the container whose logs can be retrieved.

    Prefers the running container, then the terminated one, then the
    previous instance. Returns an empty string when no logs exist yet.

    Examples:
        >>> choose_container_id(ContainerStatus(name="c", container_id="id1", running=True))
        'id1'
        >>> choose_container_id(ContainerStatus(name="c", waiting=True))
        ''
    """
    if status.running:
        return status.container_id
    if status.terminated and status.terminated_container_id:
        return status.terminated_container_id
    return status.last_terminated_container_id
