"""
Challenge Event Logger

Fire-and-forget analytics sink that inserts challenge lifecycle events
(rate limited, session not found, failed verification, solved, errors)
into the Supabase `captcha_events` table.

Schema:
    captcha_events (
        event_id    TEXT PRIMARY KEY,
        event       TEXT,
        distinct_id TEXT,
        payload     JSONB,
        created_at  TIMESTAMPTZ DEFAULT now()
    )
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client, create_client


logger = logging.getLogger(__name__)


class ChallengeEventLogger:
    """
    Inserts challenge events into Supabase.

    All writes are best-effort: errors are logged but never raised, so
    analytics can never break a challenge endpoint.
    """

    TABLE = "captcha_events"

    def __init__(self, client: Optional[Client] = None) -> None:
        if client is not None:
            self._client: Optional[Client] = client
            return

        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            logger.warning("Supabase credentials missing, challenge analytics disabled")
            self._client = None
            return
        self._client = create_client(url, key)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def capture(
        self,
        event: str,
        distinct_id: str,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record one event.

        Args:
            event: Event name, e.g. "captcha_resource_session_not_found"
            distinct_id: Session id, or "captcha_api" for service-level events
            properties: Extra JSON-serializable context
        """
        if self._client is None:
            return

        entry = self._build_entry(event, distinct_id, properties or {})
        try:
            self._client.table(self.TABLE).insert(entry).execute()
            logger.debug(f"Challenge event inserted: {entry['event_id']} ({event})")
        except Exception as e:
            logger.error(f"Challenge event insertion failed: {e}")

    def _build_entry(self, event: str, distinct_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "event_id": f"evt_{uuid.uuid4()}",
            "event": event,
            "distinct_id": distinct_id,
            "payload": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "environment": os.getenv("CAPTCHA_ENV", "production"),
                "properties": properties,
            },
        }
