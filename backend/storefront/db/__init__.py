from storefront.db.base import Base, TimestampMixin
from storefront.db.session import AsyncSessionLocal, get_db

__all__ = ["Base", "TimestampMixin", "AsyncSessionLocal", "get_db"]
