"""
Message database model.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index

from chatroom.core.database import Base


class MessageRecord(Base):
    """Row backing a chat message when the SQL store is enabled."""

    __tablename__ = "messages"

    # Insertion order; breaks created_at ties and drives retention
    seq = Column(Integer, primary_key=True, autoincrement=True)

    id = Column(String(32), unique=True, nullable=False)
    sender = Column(String(20), nullable=False)
    body = Column(Text, nullable=False, default="")
    kind = Column(String(8), nullable=False, default="text")

    # Stored as naive UTC, SQLite keeps no offset
    created_at = Column(DateTime, nullable=False, index=True)

    attachment_url = Column(Text, nullable=True)
    attachment_filename = Column(String(255), nullable=True)
    attachment_size = Column(String(32), nullable=True)

    __table_args__ = (
        Index("ix_messages_created_at_seq", "created_at", "seq"),
    )

    def __repr__(self) -> str:
        return f"<MessageRecord(id={self.id}, sender={self.sender}, kind={self.kind})>"
