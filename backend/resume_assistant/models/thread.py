"""
会话域模型 - 线程元数据表
对应 ai_chat_metadata 表：记录分析 ID 与助手 thread 的绑定关系
"""

from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from .base import TimestampModel


class ChatThreadMetadata(TimestampModel, table=True):
    """
    线程元数据表

    同一个 analysis_id 可能先后对应多个 thread，
    created_at 最新的一行是当前有效的 thread，其余为历史记录
    """
    __tablename__ = "ai_chat_metadata"

    # 复合唯一约束：(analysis_id, thread_id) 是 upsert 的冲突键
    __table_args__ = (UniqueConstraint("analysis_id", "thread_id", name="uix_analysis_thread"),)

    # 主键
    id: Optional[int] = Field(default=None, primary_key=True)

    # 分析 ID（会话身份键）
    analysis_id: str = Field(index=True, nullable=False)

    # 助手运行时分配的 thread id
    thread_id: str = Field(nullable=False)

    # 处理该 thread 的 assistant（信息字段）
    assistant_id: Optional[str] = Field(default=None)

    # 最近一次 run 的 ID（信息字段）
    run_id: Optional[str] = Field(default=None)

    # 最近一次对话时所在的简历分区
    section: Optional[str] = Field(default=None)
