"""
会话域模型 - 消息流水表
对应 ai_chat_messages 表：助手对话的完整记录
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field

from .base import TimestampModel, utc_now


class MessageRole(str, Enum):
    """消息角色枚举"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(TimestampModel, table=True):
    """
    消息流水表

    幂等约束：
    - 主键 id 由调用方生成（UUID 字符串），同一个 id 只会落库一次
    - system 消息保存每轮下发给助手的指令，仅用于审计，UI 读取路径必须过滤
    """
    __tablename__ = "ai_chat_messages"

    # 主键：调用方生成的消息 UUID，也是幂等键
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )

    # 消息角色：user, assistant, system
    role: MessageRole = Field(nullable=False)

    # 消息正文
    content: str = Field(nullable=False)

    # 消息产生时间（用于排序，和 created_at 不同，它由客户端给出）
    timestamp: datetime = Field(default_factory=utc_now, nullable=False, index=True)

    # 归属的分析 ID（会话身份键），查询热点
    analysis_id: str = Field(index=True, nullable=False)

    # 当时正在编辑的简历分区（可选）
    section: Optional[str] = Field(default=None)

    # 从回复中提取出的可一键应用的建议（可选）
    suggestion: Optional[str] = Field(default=None)

    # 助手运行时分配的 thread id（可选，首轮发送前尚未分配）
    thread_id: Optional[str] = Field(default=None, index=True)
