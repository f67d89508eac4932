"""
Repository (DAO) 模块
提供数据库操作的抽象层，封装 CRUD 逻辑
"""

from .message_repository import MessageRepository
from .thread_repository import ThreadMetadataRepository
from .resume_repository import ResumeRepository

__all__ = [
    "MessageRepository",
    "ThreadMetadataRepository",
    "ResumeRepository"
]
