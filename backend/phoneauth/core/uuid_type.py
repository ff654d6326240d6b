"""
Portable UUID column type.

UUIDs are stored as 36-character strings on every dialect so the same
schema works on SQLite in tests and PostgreSQL in production.
"""
import uuid
from sqlalchemy import TypeDecorator, String


class UUIDType(TypeDecorator):
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return str(value)
        try:
            return str(uuid.UUID(str(value)))
        except (ValueError, AttributeError):
            raise ValueError(f"Cannot convert {value} to UUID")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return str(value)


def generate_uuid() -> str:
    return str(uuid.uuid4())
