"""
Vendored helpers shared across flowvm.

The immutable mapping type lives here so the rest of the package does not
import ``frozendict`` directly.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from frozendict import frozendict

FrozenDict = frozendict


def freeze(value: Any) -> Any:
    """Recursively convert mappings to ``FrozenDict`` and lists to tuples."""

    if isinstance(value, Mapping):
        return FrozenDict({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of :func:`freeze`: plain dicts and lists, safe to mutate."""

    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


def copy_tree(value: Any) -> Any:
    """Copy nested mappings and lists; every other leaf is kept by reference.

    Function bodies may be bound methods of objects that cannot be copied.
    """

    if isinstance(value, Mapping):
        return {key: copy_tree(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [copy_tree(item) for item in value]
    return value


def json_clone(value: Any) -> Any:
    """Deep copy through a JSON round-trip.

    Raises ``TypeError`` or ``ValueError`` for values JSON cannot represent.
    """

    return json.loads(json.dumps(thaw(value)))


__all__ = ["FrozenDict", "copy_tree", "freeze", "json_clone", "thaw"]
