"""
上下文获取

客户端：ContextFetcher 在一个会话里最多获取一次简历内容（一次性开关，不是缓存）。
服务端：resolve_context 按 full -> partial -> none 的顺序为本轮对话准备上下文。
"""

import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from resume_assistant.assistant.prompts import JOB_CONTEXT_TEMPLATE, UNKNOWN_COMPANY, UNKNOWN_JOB_TITLE
from resume_assistant.models.resume import JobPosting
from resume_assistant.repositories.resume_repository import ResumeRepository

logger = logging.getLogger(__name__)


# ==================== 客户端 ====================

class ContextFetcher:
    """
    一次性简历内容获取器

    第一次调用 fetch_once 时就把开关置为已注入，无论获取是否成功，
    之后整个会话都不会再获取。已有 thread 时由定位结果直接预置开关。

    使用示例：
        fetcher = ContextFetcher(backend.fetch_resume_content)
        content = await fetcher.fetch_once(analysis_id)  # 第一次：真正获取
        content = await fetcher.fetch_once(analysis_id)  # 之后：None
    """

    def __init__(self, fetch: Callable[[str], Awaitable[Optional[str]]], seeded: bool = False):
        """
        Args:
            fetch: 按分析 ID 获取简历内容的协程函数
            seeded: 初始开关状态
        """
        self._fetch = fetch
        self.seeded = seeded

    def mark_seeded(self) -> None:
        self.seeded = True

    def reset(self) -> None:
        """切换到新的会话时重置开关"""
        self.seeded = False

    async def fetch_once(self, identity_key: str) -> Optional[str]:
        """
        获取简历内容（每个会话最多一次）

        Returns:
            简历内容字符串；已注入过或获取失败时返回 None
        """
        if self.seeded:
            return None
        self.seeded = True

        try:
            return await self._fetch(identity_key)
        except Exception as e:
            # 获取失败降级为无上下文，本轮对话继续
            logger.warning("[ContextFetcher] Error fetching resume content for %s: %s", identity_key, e)
            return None


# ==================== 服务端 ====================

class ContextLevel(str, Enum):
    """上下文完整程度"""
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


class ContextResolution(BaseModel):
    """本轮对话的上下文"""
    level: ContextLevel = ContextLevel.NONE
    job_context: Optional[str] = None
    section_content: Optional[str] = None


# 分区 ID -> formatted_resume 中的键（full）
FORMATTED_RESUME_SECTIONS: Dict[str, str] = {
    "skills": "skills",
    "professionalExperience": "experience",
    "education": "education",
    "projects": "projects",
    "personalInfo": "personalInfo",
    "professionalSummary": "professionalSummary",
    "certifications": "certifications",
    "volunteer": "volunteer",
}

# 分区 ID -> 编辑器 content.resume 中的键（partial）
EDITOR_RESUME_SECTIONS: Dict[str, str] = {
    section: section for section in FORMATTED_RESUME_SECTIONS
}


def to_json(value: Any) -> str:
    """序列化为紧凑 JSON，保留非 ASCII 字符"""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def extract_section_content(
    resume_data: Optional[Dict[str, Any]],
    section: Optional[str],
    section_keys: Dict[str, str]
) -> Optional[str]:
    """
    从结构化简历中取出某个分区并序列化

    Returns:
        JSON 字符串；分区未知或不存在时返回 None
    """
    if not section or not resume_data:
        return None
    key = section_keys.get(section)
    if key is None:
        return None
    value = resume_data.get(key)
    if value is None or value == "":
        return None
    return to_json(value)


def build_job_context(job: Optional[JobPosting]) -> Optional[str]:
    """职位没有 JD 时不生成职位上下文"""
    if job is None or not job.job_description:
        return None
    return JOB_CONTEXT_TEMPLATE.format(
        job_title=job.job_title or UNKNOWN_JOB_TITLE,
        company_name=job.company_name or UNKNOWN_COMPANY,
        job_description=to_json(job.job_description)
    )


def _resolve_from_store(
    repository: ResumeRepository,
    analysis_id: str,
    section: Optional[str]
) -> ContextResolution:
    analysis = repository.get_analysis(analysis_id)
    if analysis is not None:
        logger.info("[ContextFetcher] Found analysis data for ID: %s", analysis_id)
        resume = repository.get_resume(analysis.resume_id)
        return ContextResolution(
            level=ContextLevel.FULL,
            job_context=build_job_context(repository.get_job(analysis.job_id)),
            section_content=extract_section_content(
                resume.formatted_resume if resume else None,
                section,
                FORMATTED_RESUME_SECTIONS
            )
        )

    content = repository.get_editor_content(analysis_id)
    if content is not None:
        logger.info("[ContextFetcher] No analysis data, using editor content for ID: %s", analysis_id)
        return ContextResolution(
            level=ContextLevel.PARTIAL,
            section_content=extract_section_content(content.get("resume"), section, EDITOR_RESUME_SECTIONS)
        )

    logger.info("[ContextFetcher] No analysis or editor data for ID: %s", analysis_id)
    return ContextResolution(level=ContextLevel.NONE)


def resolve_context(
    repository: ResumeRepository,
    analysis_id: str,
    section: Optional[str] = None,
    resume_content: Optional[str] = None
) -> ContextResolution:
    """
    为本轮对话解析上下文

    优先级：
    1. full：分析记录存在，职位上下文来自职位 JD，分区内容来自 formatted_resume
    2. partial：没有分析记录但有编辑器文档，分区内容来自 content.resume
    3. none：都没有，或者数据读取出错

    客户端传来的 resume_content 只在数据源没有分区内容时补位，不改变 level

    Args:
        repository: 简历数据 Repository
        analysis_id: 分析 ID
        section: 当前分区 ID
        resume_content: 客户端首轮附带的简历内容

    Returns:
        ContextResolution
    """
    try:
        resolution = _resolve_from_store(repository, analysis_id, section)
    except SQLAlchemyError as e:
        logger.warning("[ContextFetcher] Error fetching resume data, continuing without context: %s", e)
        resolution = ContextResolution(level=ContextLevel.NONE)

    if resolution.section_content is None and resume_content:
        resolution.section_content = resume_content

    return resolution


def fetch_resume_content(repository: ResumeRepository, analysis_id: str) -> Optional[str]:
    """
    读取编辑器文档的完整内容（客户端首轮附带的 resumeContent）

    Returns:
        content 的 JSON 字符串；文档不存在时返回 None
    """
    content = repository.get_editor_content(analysis_id)
    return to_json(content) if content else None
