"""Database models for the local store."""
from sqlalchemy import Column, String, Text

from hanzimap.models.base import Base, TimestampMixin


class StoreEntry(Base, TimestampMixin):
    """One key of the local key-value store.

    Progress and the sync queue are each kept as a single JSON document
    under their own key, so a write to one never touches the other.
    """

    __tablename__ = "store_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
