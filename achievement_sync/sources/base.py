"""
Authoritative count sources

The review and chat services own the real interaction history. The
progress store only reads from them to reconcile its counters, and every
read is bounded by a record limit.
"""

from typing import Protocol


class ReviewSource(Protocol):
    """Lists a user's review records (at most `limit`)"""

    async def list_user_reviews(self, user_id: str, limit: int) -> list[dict]:
        ...


class MessageSource(Protocol):
    """Counts a user's chat messages across every message store it knows about"""

    async def count_user_messages(self, user_id: str, limit: int) -> int:
        ...
