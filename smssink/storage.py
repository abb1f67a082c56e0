import json
import logging
from datetime import timedelta
from typing import Any, Generator, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import SQLAlchemyError

from smssink.config import settings
from smssink.utils import storage_timestamp, utc_now

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

DEFAULT_LOG_LIMIT = 100
MAX_LOG_LIMIT = 1000


def init_db() -> None:
    """
    Initialize the database: create tables, seed the default API key and
    drop log entries older than the retention window.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from smssink.models import Credential

        Base.metadata.create_all(bind=engine)

        with SessionLocal() as db:
            if db.get(Credential, 1) is None:
                db.add(Credential(id=1, api_key=settings.DEFAULT_API_KEY, updated_at=storage_timestamp()))
                db.commit()
                logger.info("Seeded default API credential")
            removed = cleanup_old_logs(db, settings.LOG_RETENTION_DAYS)
            if removed:
                logger.info(f"Cleaned up {removed} log entries older than {settings.LOG_RETENTION_DAYS} days")

        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            result = db.execute(text(
                "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='messages'"
            )).scalar()
            if result == 0:
                logger.error("Database schema not applied: 'messages' table not found")
                return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def insert_message(
    db: Session,
    message_id: str,
    sender: str,
    recipient: str,
    content: Optional[str],
    media_urls: Optional[List[str]],
    messaging_profile_id: Optional[str],
    direction: str,
) -> bool:
    """
    Persist a message record.

    Args:
        db: Database session
        message_id: Unique message identifier
        sender: Sender phone number
        recipient: Recipient phone number
        content: Message text (may be empty)
        media_urls: Media URLs, stored as a JSON list ("[]" when empty)
        messaging_profile_id: Optional profile tag
        direction: "outbound" or "inbound"

    Returns:
        True if the message was stored, False on a database error
    """
    from smssink.models import Message

    logger.info(f"Creating message: id={message_id}, direction={direction}, from={sender}, to={recipient}")

    try:
        message = Message(
            id=message_id,
            created_at=storage_timestamp(),
            sender=sender,
            recipient=recipient,
            content=content,
            media_urls=json.dumps(list(media_urls or [])),
            messaging_profile_id=messaging_profile_id,
            direction=direction,
        )
        db.add(message)
        db.commit()
        return True

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message {message_id}: {e}")
        return False


def list_messages(db: Session) -> list:
    """Return all messages, newest first. Empty list when there are none."""
    from smssink.models import Message

    messages = db.query(Message).order_by(Message.created_at.desc(), Message.id.desc()).all()
    logger.debug(f"Retrieved {len(messages)} messages")
    return messages


def clear_messages(db: Session) -> bool:
    """Delete every message. Returns False on a database error."""
    from smssink.models import Message

    try:
        deleted = db.query(Message).delete()
        db.commit()
        logger.info(f"Cleared {deleted} messages")
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to clear messages: {e}")
        return False


def decode_media_urls(raw: Optional[str]) -> List[str]:
    """Decode the stored JSON media list; anything unreadable becomes []."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning(f"Unreadable media_urls column value: {raw!r}")
        return []
    return value if isinstance(value, list) else []


# =============================================================================
# Credential Store
# =============================================================================

def get_credential(db: Session):
    """
    Return the stored credential. If the row is missing (e.g. wiped by hand)
    an unsaved default credential is returned.
    """
    from smssink.models import Credential

    credential = db.get(Credential, 1)
    if credential is None:
        logger.warning("No stored credential found, falling back to default API key")
        return Credential(id=1, api_key=settings.DEFAULT_API_KEY, updated_at=storage_timestamp())
    return credential


def set_credential(db: Session, api_key: str):
    """
    Replace the API key (insert-or-replace of the single row).

    Returns:
        The stored credential, or None on a database error
    """
    from smssink.models import Credential

    try:
        credential = db.merge(Credential(id=1, api_key=api_key, updated_at=storage_timestamp()))
        db.commit()
        logger.info("API credential updated")
        return credential
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to set credential: {e}")
        return None


# =============================================================================
# Application Log
# =============================================================================

def record_log(
    level: str,
    category: str,
    message: str,
    details: Optional[dict] = None,
    db: Optional[Session] = None,
) -> bool:
    """
    Append an entry to the persisted application log.

    Opens its own session when none is given, so it can be called from
    background tasks. A failure to write is logged and reported as False;
    it never breaks the calling request.
    """
    from smssink.models import LogEntry

    session = db or SessionLocal()
    try:
        entry = LogEntry(
            created_at=storage_timestamp(),
            level=level,
            category=category,
            message=message,
            details=json.dumps(details, default=str) if details is not None else "",
        )
        session.add(entry)
        session.commit()
        return True
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning(f"Failed to write application log entry: {e}")
        return False
    finally:
        if db is None:
            session.close()


def get_logs(
    db: Session,
    level: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = DEFAULT_LOG_LIMIT,
) -> list:
    """
    Retrieve log entries, newest first, optionally filtered.

    Args:
        db: Database session
        level: Exact level filter (info, warning, error)
        category: Exact category filter (message, webhook, auth, system)
        limit: Maximum number of entries
    """
    from smssink.models import LogEntry

    query = db.query(LogEntry)
    if level:
        query = query.filter(LogEntry.level == level)
    if category:
        query = query.filter(LogEntry.category == category)

    return query.order_by(LogEntry.created_at.desc(), LogEntry.id.desc()).limit(limit).all()


def clear_logs(db: Session) -> bool:
    """Delete all log entries. Returns False on a database error."""
    from smssink.models import LogEntry

    try:
        db.query(LogEntry).delete()
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to clear logs: {e}")
        return False


def cleanup_old_logs(db: Session, days: int) -> int:
    """Remove log entries older than `days` days. Returns the number removed."""
    from smssink.models import LogEntry

    cutoff = storage_timestamp(utc_now() - timedelta(days=days))
    removed = db.query(LogEntry).filter(LogEntry.created_at < cutoff).delete()
    db.commit()
    return removed


def decode_details(raw: Optional[str]) -> Any:
    """Decode the JSON details column for API output."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


# =============================================================================
# Settings Store
# =============================================================================

def get_setting(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
    from smssink.models import Setting

    row = db.get(Setting, key)
    return row.value if row is not None else default


def set_setting(db: Session, key: str, value: str) -> bool:
    from smssink.models import Setting

    try:
        db.merge(Setting(key=key, value=value, updated_at=storage_timestamp()))
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save setting {key}: {e}")
        return False


def is_debug_mode(db: Session) -> bool:
    """Debug mode is on when SMSSINK_DEBUG is set or the stored setting is "true"."""
    if settings.SMSSINK_DEBUG:
        return True
    return get_setting(db, "debug_mode", "false") == "true"
