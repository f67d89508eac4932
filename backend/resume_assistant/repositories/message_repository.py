"""
消息 Repository
提供 ai_chat_messages 的幂等写入和读取操作
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, col

from resume_assistant.models.message import ChatMessage, MessageRole

logger = logging.getLogger(__name__)


class MessageRepository:
    """
    消息数据访问对象
    封装所有与 ai_chat_messages 表相关的数据库操作
    """

    def __init__(self, session: Session):
        """
        初始化 Repository

        Args:
            session: SQLModel 数据库会话
        """
        self.session = session

    def save_message(self, message: ChatMessage) -> bool:
        """
        幂等保存消息

        以 message.id 为幂等键：同一个 id 第二次写入时直接忽略，
        并发写入撞上主键冲突时回滚并同样视为已保存

        Args:
            message: 待保存的消息（id 由调用方生成）

        Returns:
            True 表示本次新写入，False 表示该 id 已存在
        """
        if self.session.get(ChatMessage, message.id) is not None:
            logger.debug("[MessageRepository] Skipping already stored message: %s", message.id)
            return False

        self.session.add(message)
        try:
            self.session.commit()
        except IntegrityError:
            # 另一个请求抢先写入了同一个 id
            self.session.rollback()
            logger.debug("[MessageRepository] Concurrent insert detected for message: %s", message.id)
            return False

        self.session.refresh(message)
        logger.info("[MessageRepository] Saved %s message with ID: %s", message.role.value, message.id)
        return True

    def get_message_by_id(self, message_id: str) -> Optional[ChatMessage]:
        """
        根据 ID 获取消息

        Args:
            message_id: 消息 UUID

        Returns:
            ChatMessage 对象，不存在则返回 None
        """
        return self.session.get(ChatMessage, message_id)

    def delete_message(self, analysis_id: str, message_id: str) -> bool:
        """
        删除消息（重试时替换掉旧的助手回复）

        system 消息是审计记录，不允许通过这个接口删除

        Args:
            analysis_id: 分析 ID（消息必须属于该分析）
            message_id: 消息 UUID

        Returns:
            True 表示删除了一条记录
        """
        message = self.session.get(ChatMessage, message_id)
        if message is None or message.analysis_id != analysis_id or message.role == MessageRole.SYSTEM:
            return False

        self.session.delete(message)
        self.session.commit()
        logger.info("[MessageRepository] Deleted %s message with ID: %s", message.role.value, message_id)
        return True

    def list_messages(
        self,
        analysis_id: str,
        include_system: bool = False,
        thread_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[ChatMessage]:
        """
        获取某个分析下的消息（按时间正序）

        Args:
            analysis_id: 分析 ID
            include_system: 是否包含 system 消息（仅审计/调试使用）
            thread_id: 只取某个 thread 的消息（可选）
            limit: 限制返回数量（可选）

        Returns:
            ChatMessage 对象列表
        """
        statement = select(ChatMessage).where(ChatMessage.analysis_id == analysis_id)

        if not include_system:
            statement = statement.where(ChatMessage.role != MessageRole.SYSTEM)

        if thread_id is not None:
            statement = statement.where(ChatMessage.thread_id == thread_id)

        statement = statement.order_by(
            col(ChatMessage.timestamp).asc(),
            col(ChatMessage.created_at).asc()
        )

        if limit:
            statement = statement.limit(limit)

        return list(self.session.exec(statement).all())

    def list_transcript(self, analysis_id: str) -> List[ChatMessage]:
        """
        面向用户的对话记录：永远不包含 system 消息

        Args:
            analysis_id: 分析 ID

        Returns:
            按时间正序排列的 user/assistant 消息
        """
        return self.list_messages(analysis_id, include_system=False)
