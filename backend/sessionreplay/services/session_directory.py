"""Read-side listing of stored sessions."""
from typing import List, Optional

from sessionreplay.models.session import SessionSummary, summarize
from sessionreplay.services.session_store import SessionStore


class SessionDirectory:
    """Lists and filters sessions; always derived from the store at call time."""

    def __init__(self, store: SessionStore):
        self.store = store

    def list(
        self,
        status: Optional[str] = None,
        url_contains: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SessionSummary]:
        """
        List session summaries, newest first.

        Args:
            status: Only sessions with this status
            url_contains: Only sessions whose URL contains this substring
            limit: Maximum number of rows

        Returns:
            Matching summaries sorted by ``timestamp`` descending
        """
        summaries = self.store.list()
        if status:
            summaries = [s for s in summaries if s.status == status]
        if url_contains:
            summaries = [s for s in summaries if s.url and url_contains in s.url]
        if limit is not None:
            summaries = summaries[: max(limit, 0)]
        return summaries

    def get_summary(self, session_id: str) -> SessionSummary:
        """Summary for one session; raises ``SessionNotFound``."""
        return summarize(self.store.read(session_id))

    def count(self) -> int:
        return len(self.store.session_ids())
