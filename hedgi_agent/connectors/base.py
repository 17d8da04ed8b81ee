from __future__ import annotations

import threading
from typing import Optional, Sequence

from hedgi_agent.models import VenueFetchResult


class VenueAdapter:
    source_name: str = "unknown"

    def fetch_markets(
        self,
        categories: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> VenueFetchResult:
        """Markets tagged with one of ``categories``; every market when the list is empty."""
        raise NotImplementedError
