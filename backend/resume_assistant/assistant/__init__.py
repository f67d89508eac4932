"""
Assistant 模块 - 助手运行时、调用器和回复解析
"""

from .errors import (
    AssistantError,
    AssistantRunError,
    AssistantTimeoutError,
    AssistantCancelledError,
    ThreadNotFoundError,
    ThreadBusyError,
)
from .runtime import AssistantRuntime, AssistantRun, RunStatus, ThreadMessage, InvocationResult
from .invoker import AssistantInvoker
from .interpreter import InterpretedResponse, interpret

__all__ = [
    "AssistantError",
    "AssistantRunError",
    "AssistantTimeoutError",
    "AssistantCancelledError",
    "ThreadNotFoundError",
    "ThreadBusyError",
    "AssistantRuntime",
    "AssistantRun",
    "RunStatus",
    "ThreadMessage",
    "InvocationResult",
    "AssistantInvoker",
    "InterpretedResponse",
    "interpret"
]
