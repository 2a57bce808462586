"""Tests for resource queries such as deployment/web."""

import pytest

from kutail.exceptions import ConfigError
from kutail.resource import (
    DEPLOYMENT,
    JOB,
    POD,
    SERVICE,
    STATEFUL_SET,
    is_resource_query,
    parse_resource,
    selector_from_labels,
)


class TestParseResource:
    """Tests for parse_resource."""

    @pytest.mark.parametrize(
        "query, matcher",
        [
            ("deployment/web", DEPLOYMENT),
            ("deploy/web", DEPLOYMENT),
            ("Deployments/web", DEPLOYMENT),
            ("svc/web", SERVICE),
            ("sts/web", STATEFUL_SET),
            ("job/web", JOB),
            ("po/web", POD),
        ],
    )
    def test_kinds_and_aliases(self, query: str, matcher) -> None:
        assert parse_resource(query) == (matcher, "web")

    @pytest.mark.parametrize("query", ["web", "deployment/", "/web", "deployment/web/x"])
    def test_malformed(self, query: str) -> None:
        with pytest.raises(ConfigError, match="<kind>/<name>"):
            parse_resource(query)

    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigError, match="not supported"):
            parse_resource("cronjob/nightly")


class TestIsResourceQuery:
    """Tests for telling resource queries from pod regexes."""

    def test_resource(self) -> None:
        assert is_resource_query("deploy/web")
        assert is_resource_query("pod/web-1")

    def test_pod_regex(self) -> None:
        assert not is_resource_query("web-.*")
        assert not is_resource_query("a/b")


class TestSelectorFromLabels:
    """Tests for selector_from_labels."""

    def test_match_labels_sorted(self) -> None:
        assert selector_from_labels({"tier": "web", "app": "shop"}, []) == "app=shop,tier=web"

    def test_expressions(self) -> None:
        selector = selector_from_labels(
            {},
            [
                ("env", "In", ["prod", "dev"]),
                ("track", "NotIn", ["canary"]),
                ("team", "Exists", []),
                ("legacy", "DoesNotExist", []),
            ],
        )
        assert selector == "env in (dev,prod),track notin (canary),team,!legacy"

    def test_unknown_operator(self) -> None:
        with pytest.raises(ConfigError, match="operator"):
            selector_from_labels({}, [("env", "Gt", ["1"])])

    def test_empty_selector(self) -> None:
        with pytest.raises(ConfigError, match="selects no pods"):
            selector_from_labels({}, [])
