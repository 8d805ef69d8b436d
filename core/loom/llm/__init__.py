"""Model invoker abstraction."""

from loom.llm.litellm import LiteLLMInvoker
from loom.llm.mock import ScriptedModelInvoker
from loom.llm.provider import (
    ModelError,
    ModelInvoker,
    ModelResponse,
    ModelTimeout,
    ModelUnavailable,
    Tool,
    ToolCallRequest,
    ToolCallResult,
)
from loom.llm.structured import invoke_structured

__all__ = [
    "ModelInvoker",
    "ModelResponse",
    "ModelError",
    "ModelUnavailable",
    "ModelTimeout",
    "Tool",
    "ToolCallRequest",
    "ToolCallResult",
    "LiteLLMInvoker",
    "ScriptedModelInvoker",
    "invoke_structured",
]
