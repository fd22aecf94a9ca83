"""Instruction kinds contributed outside the core."""

from flowvm.plugins.parallel import MAP, PARALLEL, ParallelPlugin

__all__ = ["MAP", "PARALLEL", "ParallelPlugin"]
