"""Currently displayed analysis result.

Each analysis request takes a ticket from :meth:`DisplayState.begin_request`.
Only the newest ticket may write the display fields, so a slow request that
finishes after a newer one cannot overwrite the newer result.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from terrainrisk.ml.analysis import AnalysisResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisplaySnapshot:
    """The three display fields and the request that produced them."""

    image_name: str | None = None
    risk_level: str = ""
    recommendation: str = ""
    request_id: int | None = None


class DisplayState:
    """Holds the displayed result; writes are single-flight by request id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._latest_issued = 0
        self._snapshot = DisplaySnapshot()

    def begin_request(self) -> int:
        """Issue a new request id, superseding every earlier one."""
        with self._lock:
            self._latest_issued = next(self._ids)
            return self._latest_issued

    def deliver(self, request_id: int, image_name: str | None, result: AnalysisResult) -> bool:
        """Apply ``result`` if ``request_id`` is still the newest request.

        Returns:
            True if the display was updated, False if the result was stale.
        """
        with self._lock:
            if request_id != self._latest_issued:
                logger.info(
                    "Dropping stale result for request %s (latest is %s)",
                    request_id,
                    self._latest_issued,
                )
                return False
            self._snapshot = DisplaySnapshot(
                image_name=image_name,
                risk_level=result.risk_level,
                recommendation=result.recommendation,
                request_id=request_id,
            )
            return True

    def snapshot(self) -> DisplaySnapshot:
        """Return the fields currently on display."""
        with self._lock:
            return self._snapshot
