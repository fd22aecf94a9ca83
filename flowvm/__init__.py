"""
flowvm: a resumable control-flow machine for action compositions.

A composition tree (sequence, if, while, try, let, async, parallel, ...) is
compiled into a flat instruction array with relative jumps. The interpreter
steps through it, suspends at every ``action`` instruction and resumes later
from a serializable continuation token.

    composition = compile_composition({"type": "sequence", "components": [...]})
    interpreter = Interpreter(composition, invoker=LocalInvoker({...}))
    outcome = await drive(interpreter, {"value": 1})
"""

from flowvm.compiler import LoweringContext, compile_composition, compile_node, validate_offsets
from flowvm.config import Settings
from flowvm.errors import (
    CompileError,
    FlowError,
    InternalError,
    InvocationError,
    RegistryError,
    StackUnderflow,
    UserError,
    ValidationError,
    normalize_error,
)
from flowvm.frames import BindingFrame, Frame, HandlerFrame, MarkerFrame
from flowvm.functions import FunctionBody, FunctionRegistry
from flowvm.instructions import Composition, Instruction
from flowvm.interpreter import Interpreter, StepContext, inspect_params
from flowvm.invoker import Invoker, LocalInvoker
from flowvm.plugins import ParallelPlugin
from flowvm.registry import Plugin, Registry, core_registry, default_registry
from flowvm.result import AwaitExternal, Failed, Finished, Outcome, StepResult, Suspended
from flowvm.runner import drive, run_sync
from flowvm.state import ContinuationToken, ExecutionState

__all__ = [
    "AwaitExternal",
    "BindingFrame",
    "CompileError",
    "Composition",
    "ContinuationToken",
    "ExecutionState",
    "Failed",
    "Finished",
    "FlowError",
    "Frame",
    "FunctionBody",
    "FunctionRegistry",
    "HandlerFrame",
    "Instruction",
    "InternalError",
    "Interpreter",
    "InvocationError",
    "Invoker",
    "LocalInvoker",
    "LoweringContext",
    "MarkerFrame",
    "Outcome",
    "ParallelPlugin",
    "Plugin",
    "Registry",
    "RegistryError",
    "Settings",
    "StackUnderflow",
    "StepContext",
    "StepResult",
    "Suspended",
    "UserError",
    "ValidationError",
    "compile_composition",
    "compile_node",
    "core_registry",
    "default_registry",
    "drive",
    "inspect_params",
    "normalize_error",
    "run_sync",
    "validate_offsets",
]
