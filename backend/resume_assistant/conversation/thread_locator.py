"""
Thread 定位

根据身份键从持久化的元数据中找到当前有效的 thread：
- 找到：返回 thread_id，并标记上下文"已注入"（历史里已经带着之前的上下文）
- 没找到：需要新建 thread 并准备新的上下文
"""

import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from resume_assistant.repositories.thread_repository import ThreadMetadataRepository

logger = logging.getLogger(__name__)


class ThreadLocation(BaseModel):
    """定位结果"""
    thread_id: Optional[str] = None
    already_seeded: bool = False
    assistant_id: Optional[str] = None
    run_id: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.thread_id is not None


NOT_FOUND = ThreadLocation()


def locate_thread(repository: ThreadMetadataRepository, identity_key: str) -> ThreadLocation:
    """
    定位身份键对应的 thread

    查询失败按"未找到"处理并记录日志，调用方会走新建 thread 的路径

    Args:
        repository: 线程元数据 Repository
        identity_key: 分析 ID

    Returns:
        ThreadLocation
    """
    try:
        metadata = repository.get_latest_thread(identity_key)
    except SQLAlchemyError as e:
        logger.error("[ThreadLocator] Error fetching thread metadata for %s: %s", identity_key, e)
        return NOT_FOUND

    if metadata is None:
        logger.info("[ThreadLocator] No existing thread found for analysis: %s", identity_key)
        return NOT_FOUND

    logger.info("[ThreadLocator] Found existing thread %s for analysis %s", metadata.thread_id, identity_key)
    return ThreadLocation(
        thread_id=metadata.thread_id,
        already_seeded=True,
        assistant_id=metadata.assistant_id,
        run_id=metadata.run_id
    )
