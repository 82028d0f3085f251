#!/usr/bin/env python3
"""
NFTGATE Audit Log
=================

Append-only record of who changed the ruleset, and how it went.

Features:
- One JSON object per line (id, timestamp, user, action, resource,
  details, ip_address, success)
- Filtering by action, user and time window
- Newest entries first

Author: Team NFTGATE
"""

import json
import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger


@dataclass
class AuditEntry:
    id: str
    timestamp: str
    user: str
    action: str
    resource: str
    details: str
    ip_address: str
    success: bool

    def to_dict(self) -> Dict:
        return asdict(self)


class AuditLog:
    """
    JSON-lines audit trail.

    Args:
        path: File the entries are appended to
        enabled: When False, log_event is a no-op
    """

    def __init__(self, path: str = "data/audit.log", enabled: bool = True):
        self.path = Path(path)
        self.enabled = enabled
        self._lock = threading.Lock()

        if self.enabled:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Cannot create audit log directory {self.path.parent}: {e}")

        logger.info(f"AuditLog initialized ({self.path}, enabled={self.enabled})")

    def log_event(self, user: str, action: str, resource: str, details: str = "",
                  ip_address: str = "", success: bool = True) -> bool:
        """
        Append one entry.

        Returns:
            True if written, False if disabled or the write failed
        """
        if not self.enabled:
            return False

        entry = AuditEntry(
            id=uuid.uuid4().hex,
            timestamp=datetime.now().isoformat(),
            user=user or "anonymous",
            action=action,
            resource=resource,
            details=details,
            ip_address=ip_address or "",
            success=bool(success),
        )

        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
            return True
        except OSError as e:
            logger.error(f"Failed to write audit entry: {e}")
            return False

    def get_logs(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
                 action: Optional[str] = None, user: Optional[str] = None,
                 limit: int = 100) -> List[Dict]:
        """
        Read entries, newest first.

        Args:
            start: Only entries at or after this time
            end: Only entries at or before this time
            action: Exact action name, e.g. ``firewall.add``
            user: Exact user name
            limit: Maximum entries returned
        """
        if not self.path.exists():
            return []

        try:
            with self._lock, open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return []

        results = []
        for line in reversed(lines):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                logger.debug(f"Skipping malformed audit line: {line[:80]}")
                continue

            if action and entry.get("action") != action:
                continue
            if user and entry.get("user") != user:
                continue
            if start or end:
                try:
                    stamp = datetime.fromisoformat(entry.get("timestamp", ""))
                except ValueError:
                    continue
                if start and stamp < start:
                    continue
                if end and stamp > end:
                    continue

            results.append(entry)
            if len(results) >= limit:
                break

        return results
