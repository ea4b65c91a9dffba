"""
Relational conversation store backed by SQLAlchemy.

Conversations and messages are separate tables joined by a foreign key. Ids
come from the database's auto-incrementing primary keys and every mutation
runs in its own transaction.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import create_engine, delete, event, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..core.exceptions import ConversationNotFound, StorageUnavailable
from ..core.models import (
    MAX_CONVERSATION_ID,
    ChatMessage,
    Conversation,
    ConversationSummary,
    MessageRole,
    StoreStats,
)
from .base import DEFAULT_OWNER_ID, ConversationStore
from .models import Base, ConversationRecord, MessageRecord

logger = logging.getLogger(__name__)

SYNC_TO_ASYNC_DRIVERS = {"sqlite": "sqlite+aiosqlite"}
ASYNC_TO_SYNC_DRIVERS = {"sqlite+aiosqlite": "sqlite"}


def _to_db(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _driver_url(database_url: str, drivers: dict[str, str]) -> str:
    url = make_url(database_url)
    drivername = drivers.get(url.drivername)
    if drivername:
        url = url.set(drivername=drivername)
    return url.render_as_string(hide_password=False)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite only enforces foreign keys when asked to on each connection."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _storable_id(conversation_id: int) -> bool:
    """Ids outside the primary key range can never name a stored row."""
    return 1 <= conversation_id <= MAX_CONVERSATION_ID


def _conversation_from_record(record: ConversationRecord) -> Conversation:
    return Conversation(
        id=record.id,
        owner_id=record.user_id,
        created_at=_from_db(record.created_at),
    )


def _message_from_record(record: MessageRecord) -> ChatMessage:
    return ChatMessage(
        id=record.id,
        conversation_id=record.conversation_id,
        role=MessageRole(record.role),
        content=record.content,
        timestamp=_from_db(record.timestamp),
    )


class SQLConversationStore(ConversationStore):
    """Manages conversation storage in a relational database."""

    backend_name = "sql"

    def __init__(self, database_url: str):
        super().__init__()
        self.database_url = database_url

        # Sync engine for schema management, async engine for requests
        self.engine = create_engine(
            _driver_url(database_url, ASYNC_TO_SYNC_DRIVERS), echo=False
        )
        self.async_engine = create_async_engine(
            _driver_url(database_url, SYNC_TO_ASYNC_DRIVERS), echo=False
        )
        _enable_sqlite_foreign_keys(self.engine)
        _enable_sqlite_foreign_keys(self.async_engine.sync_engine)

        self.AsyncSessionLocal = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )

        self._initialize_database()

    def _initialize_database(self) -> None:
        """Create tables if they don't exist and resume the timestamp clock."""
        try:
            Base.metadata.create_all(bind=self.engine)
            with self.engine.connect() as connection:
                latest = connection.execute(
                    select(func.max(MessageRecord.timestamp))
                ).scalar()
                latest_created = connection.execute(
                    select(func.max(ConversationRecord.created_at))
                ).scalar()
        except SQLAlchemyError as e:
            raise StorageUnavailable(
                f"Failed to initialize database: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        for value in (latest, latest_created):
            if value is not None:
                self._observe_timestamp(_from_db(value))

        logger.info(f"Initialized {self.backend_name} conversation store")

    async def create_conversation(
        self, owner_id: str = DEFAULT_OWNER_ID
    ) -> Conversation:
        try:
            async with self.AsyncSessionLocal() as session:
                record = ConversationRecord(
                    user_id=owner_id, created_at=_to_db(self._next_timestamp())
                )
                session.add(record)
                await session.commit()
                conversation = _conversation_from_record(record)
        except SQLAlchemyError as e:
            raise self._unavailable("create conversation", e) from e

        logger.debug(f"Created conversation {conversation.id} for {owner_id}")
        return conversation

    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        if not _storable_id(conversation_id):
            return None
        try:
            async with self.AsyncSessionLocal() as session:
                record = await session.get(ConversationRecord, conversation_id)
                return _conversation_from_record(record) if record else None
        except SQLAlchemyError as e:
            raise self._unavailable("read conversation", e) from e

    async def append_message(
        self, conversation_id: int, role: MessageRole, content: str
    ) -> ChatMessage:
        if not _storable_id(conversation_id):
            raise ConversationNotFound(conversation_id)
        try:
            async with self.AsyncSessionLocal() as session:
                async with session.begin():
                    if await session.get(ConversationRecord, conversation_id) is None:
                        raise ConversationNotFound(conversation_id)

                    record = MessageRecord(
                        conversation_id=conversation_id,
                        role=role.value,
                        content=content,
                        timestamp=_to_db(self._next_timestamp()),
                    )
                    session.add(record)
                return _message_from_record(record)
        except IntegrityError as e:
            # The conversation was deleted between the lookup and the insert
            raise ConversationNotFound(conversation_id) from e
        except SQLAlchemyError as e:
            raise self._unavailable("append message", e) from e

    async def list_messages(self, conversation_id: int) -> list[ChatMessage]:
        if not _storable_id(conversation_id):
            raise ConversationNotFound(conversation_id)
        try:
            async with self.AsyncSessionLocal() as session:
                if await session.get(ConversationRecord, conversation_id) is None:
                    raise ConversationNotFound(conversation_id)

                result = await session.execute(
                    select(MessageRecord)
                    .where(MessageRecord.conversation_id == conversation_id)
                    .order_by(MessageRecord.timestamp, MessageRecord.id)
                )
                return [_message_from_record(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._unavailable("read messages", e) from e

    async def list_conversations(
        self, owner_id: str = DEFAULT_OWNER_ID
    ) -> list[ConversationSummary]:
        last_message_at = func.max(MessageRecord.timestamp)
        last_activity = func.coalesce(last_message_at, ConversationRecord.created_at)

        try:
            async with self.AsyncSessionLocal() as session:
                result = await session.execute(
                    select(
                        ConversationRecord.id,
                        ConversationRecord.created_at,
                        func.count(MessageRecord.id).label("message_count"),
                        last_message_at.label("last_message_at"),
                    )
                    .outerjoin(
                        MessageRecord,
                        MessageRecord.conversation_id == ConversationRecord.id,
                    )
                    .where(ConversationRecord.user_id == owner_id)
                    .group_by(ConversationRecord.id, ConversationRecord.created_at)
                    .order_by(last_activity.desc(), ConversationRecord.id.desc())
                )
                rows = result.all()
        except SQLAlchemyError as e:
            raise self._unavailable("list conversations", e) from e

        return [
            ConversationSummary(
                id=row.id,
                created_at=_from_db(row.created_at),
                message_count=row.message_count,
                last_message_at=_from_db(row.last_message_at or row.created_at),
            )
            for row in rows
        ]

    async def delete_conversation(self, conversation_id: int) -> None:
        if not _storable_id(conversation_id):
            raise ConversationNotFound(conversation_id)
        try:
            async with self.AsyncSessionLocal() as session:
                async with session.begin():
                    if await session.get(ConversationRecord, conversation_id) is None:
                        raise ConversationNotFound(conversation_id)

                    # Dependent rows first to satisfy the foreign key
                    deleted = await session.execute(
                        delete(MessageRecord).where(
                            MessageRecord.conversation_id == conversation_id
                        )
                    )
                    await session.execute(
                        delete(ConversationRecord).where(
                            ConversationRecord.id == conversation_id
                        )
                    )
        except SQLAlchemyError as e:
            raise self._unavailable("delete conversation", e) from e

        logger.info(
            f"Deleted conversation {conversation_id} ({deleted.rowcount} messages)"
        )

    async def get_stats(self) -> StoreStats:
        try:
            async with self.AsyncSessionLocal() as session:
                conversations = await session.scalar(
                    select(func.count(ConversationRecord.id))
                )
                messages = await session.scalar(select(func.count(MessageRecord.id)))
        except SQLAlchemyError as e:
            raise self._unavailable("read stats", e) from e

        return StoreStats(
            backend=self.backend_name,
            conversations=conversations or 0,
            messages=messages or 0,
        )

    async def close(self) -> None:
        """Close database connections."""
        await self.async_engine.dispose()
        self.engine.dispose()

    def _unavailable(self, operation: str, error: Exception) -> StorageUnavailable:
        logger.error(f"Database failure during {operation}: {error}")
        return StorageUnavailable(
            f"Failed to {operation}: database unavailable",
            details={"error_type": type(error).__name__},
        )
