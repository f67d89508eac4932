"""
线程元数据 Repository
提供 ai_chat_metadata 的 upsert 与查询操作
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, col

from resume_assistant.models.base import utc_now
from resume_assistant.models.thread import ChatThreadMetadata

logger = logging.getLogger(__name__)


class ThreadMetadataRepository:
    """
    线程元数据数据访问对象
    封装所有与 ai_chat_metadata 表相关的数据库操作
    """

    def __init__(self, session: Session):
        """
        初始化 Repository

        Args:
            session: SQLModel 数据库会话
        """
        self.session = session

    def get_thread_metadata(self, analysis_id: str, thread_id: str) -> Optional[ChatThreadMetadata]:
        """
        根据冲突键 (analysis_id, thread_id) 获取元数据

        Args:
            analysis_id: 分析 ID
            thread_id: 助手 thread id

        Returns:
            ChatThreadMetadata 对象，不存在则返回 None
        """
        statement = select(ChatThreadMetadata).where(
            ChatThreadMetadata.analysis_id == analysis_id,
            ChatThreadMetadata.thread_id == thread_id
        )
        return self.session.exec(statement).first()

    def get_latest_thread(self, analysis_id: str) -> Optional[ChatThreadMetadata]:
        """
        获取分析 ID 当前有效的 thread：created_at 最新的一行

        Args:
            analysis_id: 分析 ID

        Returns:
            ChatThreadMetadata 对象，没有任何记录则返回 None
        """
        statement = select(ChatThreadMetadata).where(
            ChatThreadMetadata.analysis_id == analysis_id
        ).order_by(
            col(ChatThreadMetadata.created_at).desc(),
            col(ChatThreadMetadata.id).desc()
        ).limit(1)
        return self.session.exec(statement).first()

    def list_threads(self, analysis_id: str) -> List[ChatThreadMetadata]:
        """
        获取分析 ID 下的全部 thread 记录（最新的在前）
        """
        statement = select(ChatThreadMetadata).where(
            ChatThreadMetadata.analysis_id == analysis_id
        ).order_by(
            col(ChatThreadMetadata.created_at).desc(),
            col(ChatThreadMetadata.id).desc()
        )
        return list(self.session.exec(statement).all())

    def upsert_thread_metadata(
        self,
        analysis_id: str,
        thread_id: str,
        run_id: Optional[str] = None,
        assistant_id: Optional[str] = None,
        section: Optional[str] = None
    ) -> ChatThreadMetadata:
        """
        创建或更新线程元数据

        冲突键为 (analysis_id, thread_id)：
        已存在时只刷新 updated_at / run_id / assistant_id / section，不会新增行

        Args:
            analysis_id: 分析 ID
            thread_id: 助手 thread id
            run_id: 最近一次 run 的 ID（可选）
            assistant_id: assistant ID（可选）
            section: 当前简历分区（可选）

        Returns:
            最新的 ChatThreadMetadata 对象
        """
        existing = self.get_thread_metadata(analysis_id, thread_id)
        if existing is None:
            metadata = ChatThreadMetadata(
                analysis_id=analysis_id,
                thread_id=thread_id,
                run_id=run_id,
                assistant_id=assistant_id,
                section=section
            )
            self.session.add(metadata)
            try:
                self.session.commit()
            except IntegrityError:
                # 并发插入了同一个冲突键，转为更新
                self.session.rollback()
                existing = self.get_thread_metadata(analysis_id, thread_id)
                if existing is None:
                    raise
            else:
                self.session.refresh(metadata)
                logger.info(
                    "[ThreadMetadataRepository] Stored new thread %s for analysis %s",
                    thread_id, analysis_id
                )
                return metadata

        if run_id is not None:
            existing.run_id = run_id
        if assistant_id is not None:
            existing.assistant_id = assistant_id
        if section is not None:
            existing.section = section
        existing.updated_at = utc_now()
        self.session.add(existing)
        self.session.commit()
        self.session.refresh(existing)
        logger.info(
            "[ThreadMetadataRepository] Refreshed thread %s for analysis %s",
            thread_id, analysis_id
        )
        return existing
