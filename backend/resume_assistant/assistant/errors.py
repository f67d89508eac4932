"""
助手调用异常定义

只有 run 失败/超时以及整轮调用异常会最终展示给用户，
其余异常（线程失效、上下文缺失、持久化失败）都在内部降级处理
"""

from typing import Optional


class AssistantError(Exception):
    """助手调用异常基类"""

    # 调用方是否可以原样重试这一轮
    retryable: bool = False


class AssistantRunError(AssistantError):
    """run 以 failed / cancelled / expired 结束，或完成后找不到助手回复"""

    def __init__(self, message: str, status: Optional[str] = None, run_id: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.run_id = run_id


class AssistantTimeoutError(AssistantRunError):
    """轮询次数耗尽仍未 completed"""


class AssistantCancelledError(AssistantError):
    """轮询过程中收到取消信号"""


class ThreadNotFoundError(AssistantError):
    """缓存的 thread id 已失效（运行时找不到该 thread）"""

    def __init__(self, thread_id: str):
        super().__init__(f"Thread not found: {thread_id}")
        self.thread_id = thread_id


class ThreadBusyError(AssistantError):
    """同一 thread 上已有进行中的 run，运行时拒绝了新的消息或 run"""

    retryable = True

    def __init__(self, thread_id: str, detail: Optional[str] = None):
        message = f"Thread {thread_id} already has an active run"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.thread_id = thread_id
