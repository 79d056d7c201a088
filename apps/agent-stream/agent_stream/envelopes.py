"""Envelope unwrapping as an ordered chain of small extraction strategies."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

Strategy = Callable[[Any], Optional[dict[str, Any]]]


def keyed(key: str) -> Strategy:
    """Match when ``value[key]`` is an object."""

    def strategy(value: Any) -> Optional[dict[str, Any]]:
        if isinstance(value, dict) and isinstance(value.get(key), dict):
            return value[key]
        return None

    strategy.__name__ = f"keyed_{key}"
    return strategy


def carrying(*markers: str) -> Strategy:
    """Match the value itself when it already holds one of the marker keys with content."""

    def strategy(value: Any) -> Optional[dict[str, Any]]:
        if not isinstance(value, dict):
            return None
        for marker in markers:
            if isinstance(value.get(marker), (dict, list)):
                return value
        return None

    strategy.__name__ = f"carrying_{'_'.join(markers)}"
    return strategy


def itself(value: Any) -> Optional[dict[str, Any]]:
    return value if isinstance(value, dict) else None


def unwrap(value: Any, strategies: Iterable[Strategy]) -> Optional[dict[str, Any]]:
    for strategy in strategies:
        match = strategy(value)
        if match is not None:
            return match
    return None


GENERATION_ENVELOPES: tuple[Strategy, ...] = (keyed("scenarioPack"), keyed("result"), itself)
EXECUTION_ENVELOPES: tuple[Strategy, ...] = (
    carrying("run", "pullRequests"),
    keyed("result"),
    keyed("output"),
    itself,
)
