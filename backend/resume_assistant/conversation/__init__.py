"""
Conversation 模块 - 会话身份解析、thread 定位和上下文获取

客户端状态机和会话后端依赖 schemas / services，需从子模块导入：
    from resume_assistant.conversation.state_machine import ConversationStateMachine
    from resume_assistant.conversation.backend import LocalConversationBackend
"""

from .context_resolver import resolve_identity_key, is_identity_key
from .thread_locator import ThreadLocation, locate_thread
from .context_fetcher import ContextFetcher, ContextLevel, ContextResolution, resolve_context

__all__ = [
    "resolve_identity_key",
    "is_identity_key",
    "ThreadLocation",
    "locate_thread",
    "ContextFetcher",
    "ContextLevel",
    "ContextResolution",
    "resolve_context"
]
