"""
数据库模块
提供数据库连接、初始化和管理功能
"""

from .init_db import init_db, get_engine, get_session, create_db_engine, create_tables, get_database_url

__all__ = [
    "init_db",
    "get_engine",
    "get_session",
    "create_db_engine",
    "create_tables",
    "get_database_url"
]
