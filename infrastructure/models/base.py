"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
from datetime import timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# 元数据对象用于数据库迁移
metadata = Base.metadata


def as_utc(value):
    """SQLite 返回不带时区的时间，统一按 UTC 解释"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
