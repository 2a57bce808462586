"""Pod listing and watching, producing targets to tail.

List mode returns a finite list of targets from a single pod listing.
Watch mode turns pod events into an unbounded stream of added targets;
it raises LostWatchError if the underlying event stream ends.
"""

import logging
from collections.abc import AsyncIterator

from kutail.client import ClusterClient
from kutail.exceptions import LostWatchError
from kutail.models import Target
from kutail.target import TargetFilter


logger = logging.getLogger(__name__)


async def list_targets(
    client: ClusterClient,
    namespace: str,
    label_selector: str | None,
    field_selector: str | None,
    target_filter: TargetFilter,
) -> list[Target]:
    """List pods once and return the targets accepted by the filter.

    Args:
        client: The cluster client.
        namespace: The namespace to list, or '' for all namespaces.
        label_selector: Optional label selector.
        field_selector: Optional field selector.
        target_filter: The filter deciding which containers to tail.

    Returns:
        The accepted targets, init containers first within each pod.
    """
    pods = await client.list_pods(namespace, label_selector, field_selector)

    targets: list[Target] = []

    def collect(target: Target, condition_found: bool) -> None:
        if condition_found:
            targets.append(target)

    for pod in pods:
        target_filter.visit(pod, collect)

    logger.debug(f"Listed {len(targets)} targets in namespace '{namespace}'")
    return targets


async def watch_targets(
    client: ClusterClient,
    namespace: str,
    label_selector: str | None,
    field_selector: str | None,
    target_filter: TargetFilter,
) -> AsyncIterator[Target]:
    """Yield targets as pods are added or modified, forever.

    Deleted pods are forgotten by the filter so a later pod reusing the
    same name is treated as new.

    Raises:
        LostWatchError: If the pod event stream ends.
    """
    async for event_type, pod in client.watch_pods(namespace, label_selector, field_selector):
        if event_type == "DELETED":
            target_filter.forget(pod.uid)
            continue

        added: list[Target] = []

        def collect(target: Target, condition_found: bool) -> None:
            if condition_found:
                added.append(target)

        target_filter.visit(pod, collect)

        for target in added:
            yield target

    raise LostWatchError(f"lost watch connection for namespace '{namespace}'")
