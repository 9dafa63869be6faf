import logging

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, declarative_base

from message_board.config import settings
from message_board.store import Message, MessageStore, StoreSnapshot

logger = logging.getLogger(__name__)

# check_same_thread=False lets the snapshot run from the lifespan thread
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

SNAPSHOT_TABLES = ("messages", "author_message_counts", "store_state")


def init_db() -> None:
    """
    Initialize the database by creating all snapshot tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from message_board import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health() -> bool:
    """
    Check if the database is reachable and the snapshot schema is applied.

    Returns:
        True if DB is healthy and all snapshot tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))

        existing = set(inspect(engine).get_table_names())
        missing = [name for name in SNAPSHOT_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied: missing tables {missing}")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Snapshot Functions
# =============================================================================

def save_snapshot(store: MessageStore) -> int:
    """
    Persist the store's current state, replacing any previous snapshot.

    The store is copied under its lock first, so the saved rows form one
    consistent view. All rows are written in a single transaction.

    Returns:
        Number of messages saved
    """
    from message_board.models import AuthorCountRecord, MessageRecord, StoreStateRecord

    snapshot = store.snapshot()
    logger.info(f"Saving snapshot: {len(snapshot.messages)} messages, next_id={snapshot.next_id}")

    with SessionLocal() as db:
        try:
            db.query(MessageRecord).delete()
            db.query(AuthorCountRecord).delete()
            db.query(StoreStateRecord).delete()

            db.add_all(
                MessageRecord(
                    id=m.id,
                    author=m.author,
                    content=m.content,
                    created_at=m.created_at,
                    updated_at=m.updated_at,
                    likes=m.likes,
                    replies=list(m.replies),
                    parent_id=m.parent_id,
                )
                for m in snapshot.messages
            )
            db.add_all(
                AuthorCountRecord(author=author, count=count)
                for author, count in snapshot.author_counts.items()
            )
            db.add(StoreStateRecord(id=1, next_id=snapshot.next_id))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save snapshot: {e}")
            raise

    logger.info("Snapshot saved")
    return len(snapshot.messages)


def load_snapshot(store: MessageStore) -> bool:
    """
    Restore the store from the last saved snapshot.

    Returns:
        True if a snapshot was found and restored, False if none exists.
    """
    from message_board.models import AuthorCountRecord, MessageRecord, StoreStateRecord

    logger.debug("Loading snapshot...")
    with SessionLocal() as db:
        state = db.get(StoreStateRecord, 1)
        if state is None:
            logger.info("No snapshot found, starting with an empty store")
            return False

        messages = [
            Message(
                id=row.id,
                author=row.author,
                content=row.content,
                created_at=row.created_at,
                updated_at=row.updated_at,
                likes=row.likes,
                replies=list(row.replies or []),
                parent_id=row.parent_id,
            )
            for row in db.query(MessageRecord).order_by(MessageRecord.id.asc())
        ]
        author_counts = {
            row.author: row.count for row in db.query(AuthorCountRecord)
        }
        next_id = state.next_id

    store.restore(StoreSnapshot(messages=messages, next_id=next_id, author_counts=author_counts))
    return True
