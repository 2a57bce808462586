"""Container state matching.

Classifies a container's runtime phase against the set of states the
user asked to tail.
"""

from collections.abc import Iterable
from enum import Enum

from kutail.exceptions import InvalidContainerStateError
from kutail.models import ContainerStatus


class ContainerState(str, Enum):
    """A container runtime phase, or ``all`` to match any phase."""

    RUNNING = "running"
    WAITING = "waiting"
    TERMINATED = "terminated"
    ALL = "all"

    @classmethod
    def parse(cls, name: str) -> "ContainerState":
        """Return the ContainerState named by ``name``.

        Raises:
            InvalidContainerStateError: If the name is not a known state.
        """
        try:
            return cls(name)
        except ValueError:
            raise InvalidContainerStateError(
                "containerState should be one of 'running', 'waiting', "
                "'terminated', or 'all'"
            ) from None

    def matches(self, status: ContainerStatus) -> bool:
        """Return True if the observed status is in this state."""
        if self is ContainerState.ALL:
            return True
        return (
            (self is ContainerState.RUNNING and status.running)
            or (self is ContainerState.WAITING and status.waiting)
            or (self is ContainerState.TERMINATED and status.terminated)
        )


def match_any(states: Iterable[ContainerState], status: ContainerStatus) -> bool:
    """Return True if any of the configured states matches the status."""
    return any(state.matches(status) for state in states)
