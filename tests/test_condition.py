"""Tests for pod condition parsing and matching."""

import pytest

from kutail.condition import Condition
from kutail.exceptions import InvalidConditionError, InvalidConditionValueError


class TestConditionParse:
    """Tests for Condition.parse."""

    def test_name_only_defaults_to_true(self) -> None:
        assert Condition.parse("ready") == Condition(name="Ready", value="True")

    def test_case_insensitive(self) -> None:
        """Test that names and values are matched case-insensitively."""
        assert Condition.parse("PODSCHEDULED=false") == Condition("PodScheduled", "False")
        assert Condition.parse("containersready=Unknown") == Condition("ContainersReady", "Unknown")

    def test_unknown_condition(self) -> None:
        with pytest.raises(InvalidConditionError, match="condition should be one of"):
            Condition.parse("healthy")

    def test_unknown_value(self) -> None:
        with pytest.raises(InvalidConditionValueError, match="condition value should be one of"):
            Condition.parse("ready=maybe")


class TestConditionMatch:
    """Tests for Condition.match."""

    def test_matching_status(self, make_pod) -> None:
        pod = make_pod("web", conditions={"Ready": "True"})
        assert Condition("Ready", "True").match(pod)

    def test_different_status(self, make_pod) -> None:
        pod = make_pod("web", conditions={"Ready": "False"})
        assert not Condition("Ready", "True").match(pod)
        assert Condition("Ready", "False").match(pod)

    def test_condition_missing(self, make_pod) -> None:
        """Test that a pod without the condition does not match."""
        pod = make_pod("web", conditions={"PodScheduled": "True"})
        assert not Condition("Ready", "True").match(pod)

    def test_job_pods_always_ready(self, make_pod) -> None:
        """Test that Job pods match Ready regardless of their status."""
        pod = make_pod("migrate", conditions={"Ready": "False"}, owner_kinds=["Job"])
        assert Condition("Ready", "True").match(pod)
        assert Condition("Ready", "False").match(pod)

    def test_job_pods_not_exempt_from_other_conditions(self, make_pod) -> None:
        pod = make_pod("migrate", conditions={"PodScheduled": "False"}, owner_kinds=["Job"])
        assert not Condition("PodScheduled", "True").match(pod)
