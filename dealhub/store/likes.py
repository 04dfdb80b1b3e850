"""Contextual like ledger: like counts scoped to a (source deal, related deal) pair."""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from dealhub.errors import ValidationError
from dealhub.store.base import read_scope, write_scope


class LikeLedger:
    """Pair-scoped counters, kept apart from ``deals.likes``."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def like(self, source_id: int, related_id: int) -> int:
        _check_pair(source_id, related_id)
        with write_scope(self.engine) as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO related_deal_likes (source_deal_id, related_deal_id, likes)
                    VALUES (:source_id, :related_id, 1)
                    ON CONFLICT (source_deal_id, related_deal_id)
                    DO UPDATE SET likes = related_deal_likes.likes + 1
                    RETURNING likes
                    """
                ),
                {"source_id": source_id, "related_id": related_id},
            )
            return int(result.scalar_one())

    def unlike(self, source_id: int, related_id: int) -> None:
        """Remove the pair entirely; a missing pair is not an error."""
        with write_scope(self.engine) as conn:
            conn.execute(
                text(
                    """
                    DELETE FROM related_deal_likes
                    WHERE source_deal_id = :source_id AND related_deal_id = :related_id
                    """
                ),
                {"source_id": source_id, "related_id": related_id},
            )

    def contextual_likes(self, source_id: int, related_id: int) -> int:
        with read_scope(self.engine) as conn:
            value = conn.execute(
                text(
                    """
                    SELECT likes FROM related_deal_likes
                    WHERE source_deal_id = :source_id AND related_deal_id = :related_id
                    """
                ),
                {"source_id": source_id, "related_id": related_id},
            ).scalar_one_or_none()
        return int(value or 0)


def _check_pair(source_id: int, related_id: int) -> None:
    if source_id == related_id:
        raise ValidationError("A deal cannot be liked in its own context")
