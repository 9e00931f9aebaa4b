"""
User database model.

Part of the persisted layout only; accounts and passwords carry no behaviour
in the public room, display names are claimed per connection.
"""
import uuid

from sqlalchemy import Column, String, Text

from chatroom.core.database import Base


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    username = Column(String(20), unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<UserRecord(id={self.id}, username={self.username})>"
