import uuid

from sqlalchemy import Uuid
from sqlalchemy.types import TypeDecorator


class GUID(TypeDecorator):
    """UUID column: native UUID on PostgreSQL, CHAR(32) on SQLite.

    Accepts ``uuid.UUID`` or its string form on bind so route handlers can
    pass path parameters straight through.
    """

    impl = Uuid
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))
