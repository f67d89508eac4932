"""
简历数据 Repository
按 ID 读取简历分析、职位、简历和编辑器文档（对话层只读）
"""

from typing import Any, Dict, Optional

from sqlmodel import Session, select

from resume_assistant.models.resume import JobPosting, Resume, ResumeAnalysis, ResumeEditor


class ResumeRepository:
    """
    简历数据访问对象
    """

    def __init__(self, session: Session):
        """
        初始化 Repository

        Args:
            session: SQLModel 数据库会话
        """
        self.session = session

    def get_analysis(self, analysis_id: str) -> Optional[ResumeAnalysis]:
        """根据 ID 获取简历分析"""
        return self.session.get(ResumeAnalysis, analysis_id)

    def get_job(self, job_id: Optional[int]) -> Optional[JobPosting]:
        """根据 ID 获取职位，job_id 为空时返回 None"""
        if job_id is None:
            return None
        return self.session.get(JobPosting, job_id)

    def get_resume(self, resume_id: Optional[int]) -> Optional[Resume]:
        """根据 ID 获取简历，resume_id 为空时返回 None"""
        if resume_id is None:
            return None
        return self.session.get(Resume, resume_id)

    def get_editor(self, analysis_id: str) -> Optional[ResumeEditor]:
        """获取分析对应的编辑器文档"""
        statement = select(ResumeEditor).where(ResumeEditor.analysis_id == analysis_id)
        return self.session.exec(statement).first()

    def get_editor_content(self, analysis_id: str) -> Optional[Dict[str, Any]]:
        """
        获取编辑器文档的 content JSON

        Returns:
            content 字典，文档不存在或内容为空时返回 None
        """
        editor = self.get_editor(analysis_id)
        if editor is None or not editor.content:
            return None
        return editor.content

    def get_guidance(self, analysis_id: str) -> Optional[str]:
        """获取编辑器文档中的优化指引 guidanceForOptimization"""
        content = self.get_editor_content(analysis_id)
        if not content:
            return None
        return content.get("guidanceForOptimization") or None
