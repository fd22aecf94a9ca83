"""Runtime settings read from ``FLOWVM_*`` environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

ENV_PREFIX = "FLOWVM_"

COMPOSITION_NAME_ENV_KEY = f"{ENV_PREFIX}COMPOSITION_NAME"
ACTIVATION_ID_ENV_KEY = f"{ENV_PREFIX}ACTIVATION_ID"
TRACE_ENV_KEY = f"{ENV_PREFIX}TRACE"
MAX_STEPS_ENV_KEY = f"{ENV_PREFIX}MAX_STEPS"

_TRUTHY = ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Settings for one interpreter instance.

    Attributes:
        composition_name: Name under which the running composition can be invoked.
            ``async`` forks re-invoke the composition under this name.
        session: Identifier of the current activation, copied into continuation
            tokens. A fresh one is generated when unset.
        trace: Log every instruction entered.
        max_steps: Upper bound on instructions per run; ``None`` means unbounded.
    """

    composition_name: str | None = None
    session: str | None = None
    trace: bool = False
    max_steps: int | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        max_steps_raw = env.get(MAX_STEPS_ENV_KEY, "").strip()
        max_steps: int | None = None
        if max_steps_raw:
            try:
                max_steps = int(max_steps_raw)
            except ValueError:
                raise ValueError(
                    f"{MAX_STEPS_ENV_KEY} must be an integer, got {max_steps_raw!r}"
                ) from None
            if max_steps <= 0:
                max_steps = None
        return cls(
            composition_name=env.get(COMPOSITION_NAME_ENV_KEY) or None,
            session=env.get(ACTIVATION_ID_ENV_KEY) or None,
            trace=env.get(TRACE_ENV_KEY, "").lower() in _TRUTHY,
            max_steps=max_steps,
        )


__all__ = [
    "ACTIVATION_ID_ENV_KEY",
    "COMPOSITION_NAME_ENV_KEY",
    "MAX_STEPS_ENV_KEY",
    "Settings",
    "TRACE_ENV_KEY",
]
