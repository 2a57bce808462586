"""Resource queries such as ``deployment/web`` or ``po/web-1``."""

from dataclasses import dataclass, field

from kutail.exceptions import ConfigError


@dataclass(frozen=True, slots=True)
class ResourceMatcher:
    """A Kubernetes resource kind and the names it may be referred to by.

    Attributes:
        name: The resource name in singular, e.g. 'deployment'.
        aliases: Other accepted names, e.g. 'deploy' and 'deployments'.
    """

    name: str
    aliases: tuple[str, ...] = field(default_factory=tuple)

    def all_names(self) -> list[str]:
        """Return the resource names including the aliases."""
        return [*self.aliases, self.name]

    def matches(self, name: str) -> bool:
        """Return True if ``name`` refers to this resource kind."""
        return name.lower() in self.all_names()


POD = ResourceMatcher("pod", ("po", "pods"))
REPLICATION_CONTROLLER = ResourceMatcher("replicationcontroller", ("rc", "replicationcontrollers"))
SERVICE = ResourceMatcher("service", ("svc", "services"))
DAEMON_SET = ResourceMatcher("daemonset", ("ds", "daemonsets"))
DEPLOYMENT = ResourceMatcher("deployment", ("deploy", "deployments"))
REPLICA_SET = ResourceMatcher("replicaset", ("rs", "replicasets"))
STATEFUL_SET = ResourceMatcher("statefulset", ("sts", "statefulsets"))
JOB = ResourceMatcher("job", ("jobs",))  # job has no short name

RESOURCE_MATCHERS: list[ResourceMatcher] = [
    POD,
    REPLICATION_CONTROLLER,
    SERVICE,
    DEPLOYMENT,
    DAEMON_SET,
    REPLICA_SET,
    STATEFUL_SET,
    JOB,
]


def is_resource_query(query: str) -> bool:
    """Return True if the query looks like ``<kind>/<name>`` for a known kind."""
    kind, sep, _ = query.partition("/")
    return bool(sep) and any(m.matches(kind) for m in RESOURCE_MATCHERS)


def parse_resource(query: str) -> tuple[ResourceMatcher, str]:
    """Split a ``<kind>/<name>`` query into its matcher and name.

    Raises:
        ConfigError: If the query is malformed or the kind is unknown.

    Examples:
        >>> parse_resource("deploy/web")
        (ResourceMatcher(name='deployment', aliases=('deploy', 'deployments')), 'web')
    """
    kind, sep, name = query.partition("/")
    if not sep or not kind or not name or "/" in name:
        raise ConfigError(f"resource must be specified as <kind>/<name>, got '{query}'")

    for matcher in RESOURCE_MATCHERS:
        if matcher.matches(kind):
            return matcher, name

    supported = ", ".join(m.name for m in RESOURCE_MATCHERS)
    raise ConfigError(f"resource type '{kind}' is not supported, use one of: {supported}")


def selector_from_labels(
    match_labels: dict[str, str],
    match_expressions: list[tuple[str, str, list[str]]],
) -> str:
    """Build a label selector string from a LabelSelector's parts.

    Examples:
        >>> selector_from_labels({"app": "web"}, [("tier", "In", ["a", "b"])])
        'app=web,tier in (a,b)'

    Raises:
        ConfigError: If an expression has an unknown operator.
    """
    parts = [f"{key}={value}" for key, value in sorted(match_labels.items())]

    for key, operator, values in match_expressions:
        if operator == "In":
            parts.append(f"{key} in ({','.join(sorted(values))})")
        elif operator == "NotIn":
            parts.append(f"{key} notin ({','.join(sorted(values))})")
        elif operator == "Exists":
            parts.append(key)
        elif operator == "DoesNotExist":
            parts.append(f"!{key}")
        else:
            raise ConfigError(f"unsupported label selector operator '{operator}'")

    if not parts:
        raise ConfigError("resource selects no pods: its selector is empty")

    return ",".join(parts)
