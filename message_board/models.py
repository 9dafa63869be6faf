"""
SQLAlchemy ORM models for store snapshots.

The in-memory MessageStore is authoritative while the process runs; these
tables hold its last saved state. For Pydantic request/response schemas,
see schemas.py.
"""

from sqlalchemy import JSON, BigInteger, Column, Integer, String, Text

from message_board.storage import Base


class MessageRecord(Base):
    """
    Snapshot row for one message.

    Table: messages
    `replies` keeps the ordered child id list as a JSON array.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=False)
    author = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(BigInteger, nullable=False)  # ns since epoch
    updated_at = Column(BigInteger, nullable=True)
    likes = Column(Integer, nullable=False, default=0)
    replies = Column(JSON, nullable=False, default=list)
    parent_id = Column(Integer, nullable=True, index=True)  # may point at a deleted message


class AuthorCountRecord(Base):
    """Maintained per-author message count. Table: author_message_counts"""
    __tablename__ = "author_message_counts"

    author = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)


class StoreStateRecord(Base):
    """Single-row table holding the id generator position."""
    __tablename__ = "store_state"

    id = Column(Integer, primary_key=True)
    next_id = Column(Integer, nullable=False)
