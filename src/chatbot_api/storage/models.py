"""
SQLAlchemy models for the relational conversation store.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, relationship

Base = declarative_base()


class ConversationRecord(Base):
    """Conversation row."""

    __tablename__ = "conversations"

    # AUTOINCREMENT keeps SQLite from reusing ids of deleted rows
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, default="anonymous")

    # Naive UTC
    created_at = Column(DateTime, nullable=False)

    # Relationships
    messages: Mapped[list["MessageRecord"]] = relationship(
        "MessageRecord",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_conversations_user", "user_id"),
        {"sqlite_autoincrement": True},
    )


class MessageRecord(Base):
    """Message row."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )

    role = Column(String, nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)

    # Naive UTC, the history ordering key
    timestamp = Column(DateTime, nullable=False)

    # Relationships
    conversation: Mapped["ConversationRecord"] = relationship(
        "ConversationRecord", back_populates="messages"
    )

    __table_args__ = (
        Index("idx_messages_history", "conversation_id", "timestamp", "id"),
        {"sqlite_autoincrement": True},
    )
