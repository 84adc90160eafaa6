from sqlalchemy import Column, DateTime, func, String
from sqlalchemy import TypeDecorator
import uuid


class UUID(TypeDecorator):
    """UUID stored as a 36-char string so the same schema runs on SQLite and PostgreSQL.
    Accepts uuid.UUID or str on the way in, always returns str.
    """
    impl = String
    cache_ok = True

    def __init__(self, length=36, *args, **kwargs):
        super().__init__(length, *args, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        return value


def new_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin to add created_at and updated_at timestamps"""
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class UUIDMixin:
    """String UUID primary key"""
    id = Column(UUID(), primary_key=True, default=new_uuid, index=True)
