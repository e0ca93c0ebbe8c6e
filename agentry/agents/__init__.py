"""Agent definition, execution, tools, validation and state."""

from .cancellation import CancellationToken
from .definition import (
    AgentDefinition,
    DefineResult,
    HelperTool,
    ModelConfig,
    ObservabilityConfig,
    OutputTool,
    PromptsConfig,
    ValidationConfig,
    ValidationLayer,
    define_agent,
)
from .dispatcher import DispatchOutcome, ToolDispatcher, ToolResult, encode_tool_result
from .errors import (
    AgentError,
    AgentErrorCode,
    ErrorCategory,
    Severity,
    format_agent_error,
    format_agent_errors,
)
from .executor import AgentExecutor, execute_agent
from .observability import CallbackDispatcher, ExecutionMetrics
from .state import StateManager
from .tools_schema import SUBMIT_TOOL_NAME, ToolDefinition, ToolKind, build_tool_definitions
from .types import (
    ExecuteCallbacks,
    ExecuteFailure,
    ExecuteMetadata,
    ExecuteSuccess,
    ExecutionContext,
    ExecutionPhase,
    ExecutionState,
    ExecutionStatus,
    LayerKind,
    ModelRetry,
    StateUpdate,
    ToolReducerResult,
    ValidationLayerInfo,
    ValidationLayerOutcome,
)
from .validation import (
    ValidationResult,
    format_validation_error_for_prompt,
    validate_output,
)

__all__ = [
    "SUBMIT_TOOL_NAME",
    "AgentDefinition",
    "AgentError",
    "AgentErrorCode",
    "AgentExecutor",
    "CallbackDispatcher",
    "CancellationToken",
    "DefineResult",
    "DispatchOutcome",
    "ErrorCategory",
    "ExecuteCallbacks",
    "ExecuteFailure",
    "ExecuteMetadata",
    "ExecuteSuccess",
    "ExecutionContext",
    "ExecutionMetrics",
    "ExecutionPhase",
    "ExecutionState",
    "ExecutionStatus",
    "HelperTool",
    "LayerKind",
    "ModelConfig",
    "ModelRetry",
    "ObservabilityConfig",
    "OutputTool",
    "PromptsConfig",
    "Severity",
    "StateManager",
    "StateUpdate",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolKind",
    "ToolReducerResult",
    "ToolResult",
    "ValidationConfig",
    "ValidationLayer",
    "ValidationLayerInfo",
    "ValidationLayerOutcome",
    "ValidationResult",
    "build_tool_definitions",
    "define_agent",
    "encode_tool_result",
    "execute_agent",
    "format_agent_error",
    "format_agent_errors",
    "format_validation_error_for_prompt",
    "validate_output",
]
