"""Data models for kutail.

This module contains the dataclasses passed between the cluster client,
the target filter and the tails. They are plain snapshots of cluster
state and carry no behaviour beyond simple derived properties.
"""

from dataclasses import dataclass, field
from typing import Literal


EventType = Literal["ADDED", "MODIFIED", "DELETED"]


@dataclass(frozen=True, slots=True)
class ContainerStatus:
    """Observed runtime status of one container in a pod.

    At most one of ``running``, ``waiting`` and ``terminated`` is set in a
    valid observation.

    Attributes:
        name: The name of the container.
        container_id: The runtime ID of the current container instance.
        running: Whether the container is currently running.
        waiting: Whether the container is waiting to start.
        terminated: Whether the container has terminated.
        terminated_container_id: Container ID reported by the terminated state.
        last_terminated_container_id: Container ID of the previous instance,
            taken from the last termination state.
    """

    name: str
    container_id: str = ""
    running: bool = False
    waiting: bool = False
    terminated: bool = False
    terminated_container_id: str = ""
    last_terminated_container_id: str = ""

    @property
    def phase(self) -> str:
        """Return the active phase name, or 'unknown'."""
        if self.running:
            return "running"
        if self.terminated:
            return "terminated"
        if self.waiting:
            return "waiting"
        return "unknown"


@dataclass(frozen=True, slots=True)
class PodCondition:
    """A single entry of a pod's status conditions."""

    type: str
    status: str


@dataclass(frozen=True, slots=True)
class PodInfo:
    """Information about a Kubernetes pod and its container statuses.

    Attributes:
        namespace: The Kubernetes namespace containing the pod.
        name: The name of the pod.
        uid: The unique ID assigned to this pod instance.
        node_name: The node the pod is scheduled on.
        phase: The current phase of the pod (Running, Pending, etc.).
        owner_kinds: Kinds of the pod's owner references.
        conditions: The pod's status conditions.
        init_container_statuses: Statuses of init containers.
        container_statuses: Statuses of regular containers.
        ephemeral_container_statuses: Statuses of ephemeral containers.
        labels: Pod labels as a dictionary.
    """

    namespace: str
    name: str
    uid: str = ""
    node_name: str = ""
    phase: str = "Unknown"
    owner_kinds: list[str] = field(default_factory=list)
    conditions: list[PodCondition] = field(default_factory=list)
    init_container_statuses: list[ContainerStatus] = field(default_factory=list)
    container_statuses: list[ContainerStatus] = field(default_factory=list)
    ephemeral_container_statuses: list[ContainerStatus] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    def is_owned_by(self, kind: str) -> bool:
        """Return True if any owner reference has the given kind."""
        return kind in self.owner_kinds


@dataclass(frozen=True, slots=True)
class Target:
    """A (namespace, pod, container) triple to tail, plus its node.

    Attributes:
        node: The node the pod runs on.
        namespace: The Kubernetes namespace.
        pod: The name of the pod.
        container: The name of the container.
    """

    node: str
    namespace: str
    pod: str
    container: str

    @property
    def id(self) -> str:
        """Return the identity key of this target."""
        return f"{self.namespace}/{self.pod}/{self.container}"
