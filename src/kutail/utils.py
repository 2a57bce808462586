"""Utility functions for kutail.

This module provides helper functions for:
- Duration parsing (e.g. '10s', '5m', '1h30m' to a timedelta)
- Regex pattern compilation and list de-duplication
- A token-bucket rate limiter for retry loops
"""

import asyncio
import re
import time
from collections.abc import Iterable
from datetime import timedelta

from kutail.exceptions import ConfigError


# Time unit multipliers (in seconds)
TIME_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

# One or more <number><unit> components, e.g. '1h30m' or '1.5s'
DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h|d))+$")
DURATION_COMPONENT = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d)")


class DurationParseError(ConfigError):
    """Raised when a duration string cannot be parsed."""

    pass


def parse_duration(duration_str: str) -> timedelta:
    """Parse a duration string such as '30s', '5m', '1h30m' or '48h'.

    A bare '0' is accepted and means no duration.

    Args:
        duration_str: The duration string to parse.

    Returns:
        The duration as a timedelta.

    Raises:
        DurationParseError: If the duration string is invalid.

    Examples:
        >>> parse_duration('30s')
        datetime.timedelta(seconds=30)
        >>> parse_duration('1h30m')
        datetime.timedelta(seconds=5400)
    """
    if not duration_str:
        raise DurationParseError("Duration string cannot be empty")

    duration_str = duration_str.strip().lower()
    if duration_str == "0":
        return timedelta(0)

    if not DURATION_PATTERN.match(duration_str):
        raise DurationParseError(
            f"Invalid duration format: '{duration_str}'. "
            f"Expected a sequence of <number><unit> where unit is ms, s, m, h or d. "
            f"Examples: '30s', '5m', '1h30m'"
        )

    seconds = sum(
        float(value) * TIME_UNITS[unit]
        for value, unit in DURATION_COMPONENT.findall(duration_str)
    )
    return timedelta(seconds=seconds)


def compile_patterns(patterns: Iterable[str] | None, what: str = "filter") -> list[re.Pattern[str]]:
    """Compile regex patterns, splitting comma-separated values.

    Args:
        patterns: Pattern strings, each possibly comma-separated, or None.
        what: Description used in error messages.

    Returns:
        List of compiled regex patterns (empty if patterns is None or empty).

    Raises:
        ConfigError: If any pattern is an invalid regex.

    Examples:
        >>> len(compile_patterns(['frontend-.*,backend-.*']))
        2
        >>> compile_patterns(None)
        []
    """
    if not patterns:
        return []

    compiled: list[re.Pattern[str]] = []

    for value in patterns:
        for pattern in value.split(","):
            pattern = pattern.strip()
            if not pattern:
                continue
            compiled.append(compile_pattern(pattern, what))

    return compiled


def compile_pattern(pattern: str, what: str = "query") -> re.Pattern[str]:
    """Compile a single regex pattern.

    Raises:
        ConfigError: If the pattern is an invalid regex.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"failed to compile regular expression for {what} '{pattern}': {e}") from e


def make_unique(values: Iterable[str]) -> list[str]:
    """Return the values without duplicates, keeping the first occurrence.

    Examples:
        >>> make_unique(['a', 'b', 'a'])
        ['a', 'b']
    """
    return list(dict.fromkeys(values))


def parse_namespaces(namespace_args: Iterable[str] | None) -> list[str]:
    """Parse repeated or comma-separated namespace arguments into a list.

    Examples:
        >>> parse_namespaces(['frontend,backend', 'frontend'])
        ['frontend', 'backend']
        >>> parse_namespaces(None)
        []
    """
    if not namespace_args:
        return []

    namespaces = [ns.strip() for arg in namespace_args for ns in arg.split(",")]
    return make_unique(ns for ns in namespaces if ns)


class RateLimiter:
    """Token-bucket limiter: ``burst`` immediate passes, then one per ``interval``.

    Example:
        limiter = RateLimiter(interval=20.0, burst=2)
        await limiter.wait()
    """

    def __init__(self, interval: float, burst: int) -> None:
        self.interval = interval
        self.burst = burst
        self._tokens = float(burst)
        self._updated = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        if self.interval > 0:
            self._tokens = min(self.burst, self._tokens + (now - self._updated) / self.interval)
        else:
            self._tokens = float(self.burst)
        self._updated = now

    async def wait(self) -> None:
        """Wait until a token is available and take it."""
        self._refill()
        while self._tokens < 1:
            await asyncio.sleep((1 - self._tokens) * self.interval)
            self._refill()
        self._tokens -= 1
