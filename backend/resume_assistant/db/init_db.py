"""
数据库初始化脚本
负责创建数据库引擎和表结构
"""

import logging
import os
from pathlib import Path
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

# 导入模型以注册到 SQLModel.metadata
from resume_assistant.models import (  # noqa: F401
    ChatMessage,
    ChatThreadMetadata,
    JobPosting,
    Resume,
    ResumeAnalysis,
    ResumeEditor,
)

logger = logging.getLogger(__name__)

_engine = None


def get_database_url() -> str:
    """
    获取数据库连接 URL
    优先使用环境变量 DATABASE_URL，其次 DATABASE_PATH，否则使用默认的 SQLite 文件
    """
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    db_path = os.environ.get("DATABASE_PATH", "database.db")
    # 确保路径是绝对路径
    if not os.path.isabs(db_path):
        # 从 backend 目录解析
        project_root = Path(__file__).parent.parent.parent
        db_path = str(project_root / db_path)
    return f"sqlite:///{db_path}"


def create_db_engine(database_url: str):
    """
    根据 URL 创建数据库引擎
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        # SQLite 特有配置：允许 FastAPI 线程池复用连接
        connect_args = {"check_same_thread": False}
    return create_engine(
        database_url,
        echo=False,  # 设置为 True 可查看 SQL 语句
        connect_args=connect_args
    )


def get_engine():
    """
    返回进程级数据库引擎（懒加载）
    """
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_database_url())
    return _engine


def get_session() -> Generator[Session, None, None]:
    """
    请求级数据库会话（FastAPI 依赖）
    """
    with Session(get_engine()) as session:
        yield session


def create_tables(engine) -> None:
    """
    创建所有数据库表
    SQLModel 会自动根据模型创建表结构
    """
    SQLModel.metadata.create_all(engine)
    logger.info("[init_db] Database tables ready at %s", engine.url)


def init_db() -> None:
    """
    完整的数据库初始化流程
    1. 创建数据库引擎
    2. 创建所有表结构
    """
    logger.info("[init_db] Initializing database")
    create_tables(get_engine())


if __name__ == "__main__":
    # 直接运行此脚本时，执行数据库初始化
    logging.basicConfig(level=logging.INFO)
    init_db()
