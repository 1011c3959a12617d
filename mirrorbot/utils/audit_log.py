"""
Trade audit log
Append-only CSV of everything the bot observed and did
"""

import csv
from collections import deque
from dataclasses import astuple, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Deque, List, Optional

from mirrorbot.core.logger import get_logger


logger = get_logger(__name__)

HEADER = ["Timestamp", "Action", "Wallet", "Dex", "Token", "Amount", "Reason"]


@dataclass(frozen=True)
class AuditEntry:
    timestamp: str
    action: str
    wallet: str
    dex: str
    token: str
    amount: str
    reason: str


class AuditLog:
    """
    Fire-and-forget audit sink

    Rows are written to `path` (header added on first use) and the most recent
    ones are kept in memory. Write failures are logged and swallowed so an
    audit problem never interrupts trading.
    """

    def __init__(self, path: Optional[str] = None, enabled: bool = True, keep_recent: int = 1000):
        self.path = Path(path) if path else None
        self.enabled = enabled
        self._recent: Deque[AuditEntry] = deque(maxlen=keep_recent)

    def record(
        self,
        action: str,
        wallet: str = "",
        dex: str = "",
        token: str = "",
        amount: str = "",
        reason: str = ""
    ) -> None:
        if not self.enabled:
            return

        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            wallet=wallet,
            dex=dex,
            token=token,
            amount=amount,
            reason=reason,
        )
        self._recent.append(entry)

        if self.path is not None:
            self._append(entry)

    def _append(self, entry: AuditEntry) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            with open(self.path, "a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if write_header:
                    writer.writerow(HEADER)
                writer.writerow(astuple(entry))
        except OSError as e:
            logger.error("audit_write_failed", path=str(self.path), action=entry.action, error=str(e))

    def recent(self, action: Optional[str] = None) -> List[AuditEntry]:
        if action is None:
            return list(self._recent)
        return [entry for entry in self._recent if entry.action == action]
