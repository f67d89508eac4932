"""
基础数据库配置模块
提供所有模型共用的基础类和时间工具
"""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


def utc_now() -> datetime:
    """返回 timezone-aware 的当前 UTC 时间（替代已弃用的 utcnow()）"""
    return datetime.now(timezone.utc)


# 全局基础模型，包含创建和更新时间戳
class TimestampModel(SQLModel):
    """时间戳基类，为所有模型提供 created_at 和 updated_at 字段

    注意：SQLite 不保存时区信息，读回的值为 naive datetime，
    比较时统一按 UTC 处理（见 ensure_aware）
    """
    created_at: Optional[datetime] = Field(
        default_factory=utc_now,
        nullable=False
    )
    updated_at: Optional[datetime] = Field(
        default_factory=utc_now,
        nullable=False,
        sa_column_kwargs={"onupdate": utc_now}
    )


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """将 naive datetime 视为 UTC 并补上时区"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
