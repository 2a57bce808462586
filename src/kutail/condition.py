"""Pod condition matching, e.g. ``ready`` or ``podscheduled=false``."""

from dataclasses import dataclass

from kutail.exceptions import InvalidConditionError, InvalidConditionValueError
from kutail.models import PodInfo


VALID_CONDITIONS: list[str] = [
    "ContainersReady",
    "Initialized",
    "Ready",
    "PodScheduled",
    "DisruptionTarget",
    "PodReadyToStartContainers",
]

VALID_VALUES: list[str] = ["True", "False", "Unknown"]


@dataclass(frozen=True, slots=True)
class Condition:
    """A pod condition name and the status it must have.

    Attributes:
        name: The condition type, e.g. 'Ready'.
        value: The desired status: 'True', 'False' or 'Unknown'.
    """

    name: str
    value: str

    @classmethod
    def parse(cls, condition: str) -> "Condition":
        """Parse ``name`` or ``name=value``, case-insensitively.

        The value defaults to True.

        Raises:
            InvalidConditionError: If the name is not a known condition.
            InvalidConditionValueError: If the value is not a known status.

        Examples:
            >>> Condition.parse("ready")
            Condition(name='Ready', value='True')
            >>> Condition.parse("PodScheduled=false")
            Condition(name='PodScheduled', value='False')
        """
        name_part, _, value_part = condition.lower().partition("=")
        if not value_part:
            value_part = "true"

        name = next((c for c in VALID_CONDITIONS if c.lower() == name_part), None)
        if name is None:
            raise InvalidConditionError(
                "condition should be one of '" + "', '".join(VALID_CONDITIONS) + "'"
            )

        value = next((v for v in VALID_VALUES if v.lower() == value_part), None)
        if value is None:
            raise InvalidConditionValueError(
                "condition value should be one of '" + "', '".join(VALID_VALUES) + "'"
            )

        return cls(name=name, value=value)

    def match(self, pod: PodInfo) -> bool:
        """Return True if the pod satisfies this condition.

        Pods owned by a Job always match the Ready condition: a Job pod
        turns Ready as soon as it runs, so filtering on it would hide the
        progress of the Job.
        """
        if self.name == "Ready" and pod.is_owned_by("Job"):
            return True

        for condition in pod.conditions:
            if condition.type == self.name:
                return condition.status == self.value

        return False
