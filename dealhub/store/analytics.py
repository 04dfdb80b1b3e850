"""Append-only analytics log."""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from dealhub.errors import ValidationError
from dealhub.store.base import read_scope, row_dicts, write_scope

ACTIONS = frozenset({"view", "click", "copy_code"})


class AnalyticsRecorder:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def record(
        self,
        deal_id: int,
        action: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> int:
        """Append an event; a ``click`` also bumps the deal's click counter."""
        if action not in ACTIONS:
            raise ValidationError(f"Unknown analytics action: {action}")
        with write_scope(self.engine) as conn:
            event_id = conn.execute(
                text(
                    """
                    INSERT INTO analytics (deal_id, action, ip_address, user_agent)
                    VALUES (:deal_id, :action, :ip_address, :user_agent)
                    RETURNING id
                    """
                ),
                {"deal_id": deal_id, "action": action, "ip_address": ip_address, "user_agent": user_agent},
            ).scalar_one()
            if action == "click":
                conn.execute(text("UPDATE deals SET clicks = clicks + 1 WHERE id = :id"), {"id": deal_id})
        return int(event_id)

    def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        with read_scope(self.engine) as conn:
            return row_dicts(
                conn.execute(
                    text(
                        """
                        SELECT a.id, a.deal_id, a.action, a.timestamp, a.ip_address,
                               d.software_name, d.discount
                        FROM analytics a
                        LEFT JOIN deals d ON d.id = a.deal_id
                        ORDER BY a.timestamp DESC, a.id DESC
                        LIMIT :limit
                        """
                    ),
                    {"limit": limit},
                )
            )

    def stats(self) -> dict[str, int]:
        with read_scope(self.engine) as conn:
            row = conn.execute(
                text(
                    """
                    SELECT
                        (SELECT COUNT(*) FROM deals) AS totalDeals,
                        (SELECT COUNT(*) FROM categories) AS totalCategories,
                        (SELECT COUNT(*) FROM analytics WHERE action = 'view') AS totalViews,
                        (SELECT COUNT(*) FROM analytics WHERE action = 'click') AS totalClicks
                    """
                )
            ).mappings().one()
        return {key: int(value or 0) for key, value in row.items()}
