"""
数据库模型模块
导出所有表模型和枚举类型
"""

# 会话域模型
from .message import ChatMessage, MessageRole
from .thread import ChatThreadMetadata

# 简历域模型
from .resume import JobPosting, Resume, ResumeAnalysis, ResumeEditor

# 基础模型
from .base import TimestampModel, utc_now, ensure_aware

# 定义导出的内容
__all__ = [
    # 会话域
    "ChatMessage", "MessageRole",
    "ChatThreadMetadata",
    # 简历域
    "JobPosting", "Resume", "ResumeAnalysis", "ResumeEditor",
    # 基础模型
    "TimestampModel", "utc_now", "ensure_aware"
]
