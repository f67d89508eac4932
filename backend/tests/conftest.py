"""
Pytest 测试配置
提供测试数据库、简历数据、假助手运行时等测试基础设施
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Generator, List, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

# 添加项目根目录到 sys.path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from resume_assistant.assistant.errors import ThreadBusyError, ThreadNotFoundError
from resume_assistant.assistant.runtime import AssistantRun, RunStatus, ThreadMessage
from resume_assistant.db.init_db import create_tables
from resume_assistant.models import JobPosting, Resume, ResumeAnalysis, ResumeEditor


ANALYSIS_ID = "1b4e28ba-2fa1-11d2-883f-0016d3cca427"
EDITOR_ONLY_ANALYSIS_ID = "6fa459ea-ee8a-3ca4-894e-db77e160355e"
UNKNOWN_ANALYSIS_ID = "9c5b94b1-35ad-49bb-b118-8e8fc24abf80"

FORMATTED_RESUME = {
    "skills": ["Python", "FastAPI", "SQL"],
    "experience": [{"company": "Acme", "title": "Backend Engineer", "years": 3}],
    "education": [{"school": "State University", "degree": "BSc"}],
}

EDITOR_CONTENT = {
    "resume": {
        "skills": ["Go", "Kubernetes"],
        "professionalExperience": [{"company": "Globex", "title": "SRE"}],
    },
    "guidanceForOptimization": "Quantify the impact of your infrastructure work.",
}


# ==================== 数据库 Fixtures ====================

@pytest.fixture(scope="function")
def test_db_engine():
    """
    创建测试用的内存数据库引擎
    每个测试函数都会获得一个全新的数据库；StaticPool 保证多个 Session 共享同一个内存库
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    # 创建所有表
    create_tables(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """
    创建测试用的数据库会话
    """
    with Session(test_db_engine) as session:
        yield session


# ==================== 测试数据 Fixtures ====================

@pytest.fixture(scope="function")
def test_analysis(test_db_session: Session) -> ResumeAnalysis:
    """
    创建完整的分析数据：职位 + 结构化简历 + 分析 + 编辑器文档
    """
    job = JobPosting(
        job_title="Senior Python Developer",
        company_name="Tech Corp",
        job_description={"summary": "Build APIs", "requirements": ["Python", "SQL"]}
    )
    resume = Resume(formatted_resume=FORMATTED_RESUME)
    test_db_session.add(job)
    test_db_session.add(resume)
    test_db_session.commit()
    test_db_session.refresh(job)
    test_db_session.refresh(resume)

    analysis = ResumeAnalysis(id=ANALYSIS_ID, job_id=job.id, resume_id=resume.id)
    editor = ResumeEditor(analysis_id=ANALYSIS_ID, content=EDITOR_CONTENT)
    test_db_session.add(analysis)
    test_db_session.add(editor)
    test_db_session.commit()
    test_db_session.refresh(analysis)
    return analysis


@pytest.fixture(scope="function")
def test_editor_only(test_db_session: Session) -> ResumeEditor:
    """
    只有编辑器文档、没有分析记录的数据
    """
    editor = ResumeEditor(analysis_id=EDITOR_ONLY_ANALYSIS_ID, content=EDITOR_CONTENT)
    test_db_session.add(editor)
    test_db_session.commit()
    test_db_session.refresh(editor)
    return editor


# ==================== Repository Fixtures ====================

@pytest.fixture(scope="function")
def message_repository(test_db_session: Session):
    """
    创建 MessageRepository 实例
    """
    from resume_assistant.repositories.message_repository import MessageRepository
    return MessageRepository(test_db_session)


@pytest.fixture(scope="function")
def thread_repository(test_db_session: Session):
    """
    创建 ThreadMetadataRepository 实例
    """
    from resume_assistant.repositories.thread_repository import ThreadMetadataRepository
    return ThreadMetadataRepository(test_db_session)


@pytest.fixture(scope="function")
def resume_repository(test_db_session: Session):
    """
    创建 ResumeRepository 实例
    """
    from resume_assistant.repositories.resume_repository import ResumeRepository
    return ResumeRepository(test_db_session)


# ==================== 助手运行时 Fixtures ====================

class FakeRuntime:
    """
    假助手运行时

    statuses 是每次 retrieve_run 依次返回的状态，用完后一直返回最后一个；
    第一次返回 completed 时往 thread 里写入 reply
    """

    assistant_id = "asst_test"

    def __init__(
        self,
        statuses: Optional[List[RunStatus]] = None,
        reply: str = "Here is how to improve your resume.",
        busy: bool = False
    ):
        self.statuses = list(statuses or [RunStatus.COMPLETED])
        self.reply = reply
        self.busy = busy

        self.threads: set = set()
        self.created_threads: List[str] = []
        self.user_messages: List[tuple] = []
        self.runs: List[dict] = []
        self.retrieve_calls = 0

        self._messages: Dict[str, List[ThreadMessage]] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._status_index = 0
        self._replied = False

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def create_thread(self) -> str:
        thread_id = f"thread_{len(self.created_threads) + 1}"
        self.threads.add(thread_id)
        self.created_threads.append(thread_id)
        self._messages[thread_id] = []
        return thread_id

    async def retrieve_thread(self, thread_id: str) -> str:
        if thread_id not in self.threads:
            raise ThreadNotFoundError(thread_id)
        return thread_id

    async def add_user_message(self, thread_id: str, content: str) -> str:
        if self.busy:
            raise ThreadBusyError(thread_id)
        message_id = f"msg_user_{len(self.user_messages) + 1}"
        self.user_messages.append((thread_id, content))
        self._messages[thread_id].append(ThreadMessage(
            message_id=message_id, role="user", text=content, created_at=self._tick()
        ))
        return message_id

    async def create_run(self, thread_id: str, instructions: Optional[str] = None) -> AssistantRun:
        run_id = f"run_{len(self.runs) + 1}"
        self.runs.append({"thread_id": thread_id, "run_id": run_id, "instructions": instructions})
        self._status_index = 0
        self._replied = False
        return AssistantRun(run_id=run_id, thread_id=thread_id, status=RunStatus.QUEUED)

    async def retrieve_run(self, thread_id: str, run_id: str) -> AssistantRun:
        self.retrieve_calls += 1
        status = self.statuses[min(self._status_index, len(self.statuses) - 1)]
        self._status_index += 1
        if status == RunStatus.COMPLETED and not self._replied:
            self._replied = True
            self._messages[thread_id].append(ThreadMessage(
                message_id=f"msg_assistant_{run_id}",
                role="assistant",
                text=self.reply,
                created_at=self._tick(),
                run_id=run_id
            ))
        return AssistantRun(run_id=run_id, thread_id=thread_id, status=status)

    async def list_messages(self, thread_id: str) -> List[ThreadMessage]:
        return list(reversed(self._messages.get(thread_id, [])))


@pytest.fixture(scope="function")
def fake_runtime() -> FakeRuntime:
    """
    立即完成的假运行时
    """
    return FakeRuntime()


@pytest.fixture(scope="function")
def make_runtime():
    """
    按需构造假运行时：make_runtime(statuses=[...], reply="...")
    """
    return FakeRuntime


@pytest.fixture(scope="function")
def no_sleep() -> AsyncMock:
    """
    替代 asyncio.sleep，记录调用次数而不真正等待
    """
    return AsyncMock(return_value=None)


# ==================== Pytest 配置 ====================

def pytest_configure(config):
    """
    Pytest 初始化配置
    """
    # 标记测试分类
    config.addinivalue_line(
        "markers", "unit: Unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: Slow running tests"
    )
