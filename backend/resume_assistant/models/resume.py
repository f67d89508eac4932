"""
简历域模型 - 简历数据存储
对话编排层只读这些表，用来为助手的第一轮对话准备上下文
"""

import uuid
from typing import Optional, Dict, Any

from sqlmodel import Field, Column, JSON

from .base import TimestampModel


class JobPosting(TimestampModel, table=True):
    """
    职位表
    存储用户投递的职位信息
    """
    __tablename__ = "job_postings"

    # 主键
    id: Optional[int] = Field(default=None, primary_key=True)

    # 岗位名称
    job_title: Optional[str] = Field(default=None)

    # 公司名称
    company_name: Optional[str] = Field(default=None)

    # JD 内容 JSON（解析后的结构或原文包装）
    job_description: Optional[Any] = Field(default=None, sa_column=Column(JSON))


class Resume(TimestampModel, table=True):
    """
    简历表
    formatted_resume 是解析后的结构化简历
    """
    __tablename__ = "resumes"

    # 主键
    id: Optional[int] = Field(default=None, primary_key=True)

    # 结构化简历 JSON：skills / experience / education / projects ...
    formatted_resume: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))


class ResumeAnalysis(TimestampModel, table=True):
    """
    简历分析表
    一次"简历 x 职位"的分析，它的 id 就是对话的身份键
    """
    __tablename__ = "resume_analyses"

    # 主键：UUID 字符串（前端路由中出现的就是它）
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    # 关联职位（可选）
    job_id: Optional[int] = Field(default=None, foreign_key="job_postings.id")

    # 关联简历（可选）
    resume_id: Optional[int] = Field(default=None, foreign_key="resumes.id")


class ResumeEditor(TimestampModel, table=True):
    """
    简历编辑器文档表
    content 中包含 resume（编辑中的简历）和 guidanceForOptimization（优化指引）
    """
    __tablename__ = "resume_editors"

    # 主键
    id: Optional[int] = Field(default=None, primary_key=True)

    # 分析 ID，一个分析只有一份编辑器文档
    analysis_id: str = Field(unique=True, index=True, nullable=False)

    # 编辑器内容 JSON
    content: Optional[Dict[str, Any]] = Field(default_factory=dict, sa_column=Column(JSON))
