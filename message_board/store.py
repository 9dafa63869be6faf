"""
In-memory message store.

Holds the message map (id -> Message), the next-id counter and the
author -> message-count map. Every operation runs under a single lock so
multi-map updates in create/delete are never observed half-applied.
"""

import logging
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import RLock
from typing import Callable, Optional

from message_board.errors import AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# 24h in nanoseconds
DAY_IN_NANOS = 24 * 60 * 60 * 1_000_000_000


class SortOrder(str, Enum):
    """Ordering for top-level listings."""

    NEWEST = "newest"
    OLDEST = "oldest"
    POPULAR = "popular"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SortOrder":
        """Map a raw sort_by value to a SortOrder, defaulting to NEWEST."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.NEWEST


@dataclass
class Message:
    """
    A single board message.

    `replies` holds ids of direct children in insertion order. A message
    with a `parent_id` is a reply and never appears in top-level listings.
    """

    id: int
    author: str
    content: str
    created_at: int
    updated_at: Optional[int] = None
    likes: int = 0
    replies: list[int] = field(default_factory=list)
    parent_id: Optional[int] = None

    def copy(self) -> "Message":
        """Detached copy, safe to hand to callers."""
        return replace(self, replies=list(self.replies))


@dataclass
class PaginatedResponse:
    """One page of top-level messages plus paging metadata."""

    messages: list[Message]
    total: int
    page: int
    total_pages: int
    has_next: bool
    has_previous: bool


@dataclass
class MessageStats:
    total_messages: int = 0
    total_authors: int = 0
    messages_today: int = 0


@dataclass
class StoreSnapshot:
    """Consistent copy of the three maps, used for snapshot/restore."""

    messages: list[Message]
    next_id: int
    author_counts: dict[str, int]


def _sort_key(order: SortOrder) -> Callable[[Message], tuple]:
    if order is SortOrder.OLDEST:
        return lambda m: (m.created_at, m.id)
    if order is SortOrder.POPULAR:
        return lambda m: (-m.likes, m.id)
    return lambda m: (-m.created_at, -m.id)


def _require_content(content: str) -> None:
    if not content or not content.strip():
        raise ValidationError("Message content cannot be empty")


class MessageStore:
    """
    Thread-safe in-memory storage for board messages.

    Ids are allocated sequentially from 1 and never reused. The author
    message count is adjusted incrementally on create/delete, never
    recomputed (see recompute_author_counts for a from-scratch check).
    """

    def __init__(self, clock: Callable[[], int] = time.time_ns) -> None:
        self._clock = clock
        self._lock = RLock()
        self._messages: dict[int, Message] = {}
        self._next_id = 1
        self._author_counts: dict[str, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_message(
        self,
        content: str,
        parent_id: Optional[int],
        caller: str,
    ) -> Message:
        """
        Create a new message, optionally as a reply to `parent_id`.

        Content is stored as given; only emptiness after trimming is checked.

        Raises:
            ValidationError: content is empty after trimming
            NotFoundError: parent_id does not reference an existing message
        """
        _require_content(content)

        with self._lock:
            parent = None
            if parent_id is not None:
                parent = self._messages.get(parent_id)
                if parent is None:
                    raise NotFoundError("Parent message not found")

            message_id = self._next_id
            self._next_id += 1

            message = Message(
                id=message_id,
                author=caller,
                content=content,
                created_at=self._clock(),
                parent_id=parent_id,
            )

            if parent is not None:
                parent.replies.append(message_id)

            self._author_counts[caller] = self._author_counts.get(caller, 0) + 1
            self._messages[message_id] = message

            logger.info(f"Message created: id={message_id}, parent_id={parent_id}")
            logger.debug(f"Author {caller!r} now has {self._author_counts[caller]} messages")
            return message.copy()

    def update_message(self, message_id: int, new_content: str, caller: str) -> Message:
        """
        Replace a message's content. Only the author may do this.

        Raises:
            ValidationError: new_content is empty after trimming
            NotFoundError: message does not exist
            AuthorizationError: caller is not the author
        """
        _require_content(new_content)

        with self._lock:
            message = self._get_or_raise(message_id)
            if message.author != caller:
                raise AuthorizationError("Only the author can update this message")

            message.content = new_content
            message.updated_at = self._clock()
            logger.info(f"Message updated: id={message_id}")
            return message.copy()

    def delete_message(self, message_id: int, caller: str) -> None:
        """
        Delete a message. Only the author may do this.

        Replies of the deleted message are not removed; they keep their
        parent_id and become orphans.

        Raises:
            NotFoundError: message does not exist
            AuthorizationError: caller is not the author
        """
        with self._lock:
            message = self._get_or_raise(message_id)
            if message.author != caller:
                raise AuthorizationError("Only the author can delete this message")

            if message.parent_id is not None:
                parent = self._messages.get(message.parent_id)
                if parent is not None:
                    parent.replies = [r for r in parent.replies if r != message_id]

            del self._messages[message_id]

            author = message.author
            if author in self._author_counts:
                self._author_counts[author] = max(self._author_counts[author] - 1, 0)

            logger.info(f"Message deleted: id={message_id}")
            if message.replies:
                logger.debug(f"Message {message_id} left {len(message.replies)} orphaned replies")

    def like_message(self, message_id: int) -> None:
        """Increment likes by one. Any caller may like any message, repeatedly."""
        with self._lock:
            message = self._get_or_raise(message_id)
            message.likes += 1
            logger.debug(f"Message liked: id={message_id}, likes={message.likes}")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_message(self, message_id: int) -> Message:
        with self._lock:
            return self._get_or_raise(message_id).copy()

    def get_messages(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: Optional[str] = None,
    ) -> PaginatedResponse:
        """
        Page through top-level messages.

        Pages are 1-indexed. Out-of-range pages return an empty list with
        correct metadata. Ties in the sort key are broken by id.

        Raises:
            ValidationError: page or limit is less than 1
        """
        if limit < 1:
            raise ValidationError("Page limit must be at least 1")
        if page < 1:
            raise ValidationError("Page number must be at least 1")

        order = SortOrder.parse(sort_by)

        with self._lock:
            top_level = [m for m in self._messages.values() if m.parent_id is None]
            top_level.sort(key=_sort_key(order))

            total = len(top_level)
            total_pages = math.ceil(total / limit)
            skip = (page - 1) * limit
            messages = [m.copy() for m in top_level[skip:skip + limit]]

        logger.debug(
            f"Listing page={page}, limit={limit}, sort_by={order.value}: "
            f"{len(messages)} of {total} top-level messages"
        )

        return PaginatedResponse(
            messages=messages,
            total=total,
            page=page,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1,
        )

    def get_message_thread(self, message_id: int) -> list[Message]:
        """
        Return the message followed by its direct replies in stored order.

        Reply ids that no longer resolve are skipped.
        """
        with self._lock:
            message = self._get_or_raise(message_id)
            thread = [message.copy()]
            for reply_id in message.replies:
                reply = self._messages.get(reply_id)
                if reply is not None:
                    thread.append(reply.copy())
            return thread

    def get_stats(self) -> MessageStats:
        """
        Aggregate statistics.

        total_authors is computed by scanning messages, not from the
        author-count map. messages_today counts messages created within
        the last 24 hours.
        """
        now = self._clock()
        with self._lock:
            authors = set()
            messages_today = 0
            for message in self._messages.values():
                authors.add(message.author)
                if now - message.created_at < DAY_IN_NANOS:
                    messages_today += 1

            return MessageStats(
                total_messages=len(self._messages),
                total_authors=len(authors),
                messages_today=messages_today,
            )

    def get_author_message_count(self, author: str) -> int:
        """Maintained message count for an author (0 if never seen)."""
        with self._lock:
            return self._author_counts.get(author, 0)

    def recompute_author_counts(self) -> dict[str, int]:
        """Rebuild the author counts from the stored messages."""
        with self._lock:
            counts: dict[str, int] = {}
            for message in self._messages.values():
                counts[message.author] = counts.get(message.author, 0) + 1
            return counts

    # =========================================================================
    # Snapshot / restore
    # =========================================================================

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                messages=[m.copy() for m in self._messages.values()],
                next_id=self._next_id,
                author_counts=dict(self._author_counts),
            )

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Replace all state with the contents of `snapshot`."""
        messages = {m.id: m.copy() for m in snapshot.messages}
        if messages and snapshot.next_id <= max(messages):
            raise ValueError(
                f"Snapshot next_id {snapshot.next_id} would reuse an existing id"
            )

        with self._lock:
            self._messages = messages
            self._next_id = snapshot.next_id
            self._author_counts = dict(snapshot.author_counts)

        logger.info(
            f"Store restored: {len(messages)} messages, next_id={snapshot.next_id}"
        )

    def _get_or_raise(self, message_id: int) -> Message:
        message = self._messages.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message
