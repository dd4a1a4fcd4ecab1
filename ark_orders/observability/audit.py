"""
Order audit trail and log rotation.
Writes one JSON object per lifecycle event to <dir>/YYYY-MM-DD.jsonl.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Dict, List, Optional

from ark_orders.protocols.logging_models import OrderAuditRow

logger = logging.getLogger("order_audit")


def setup_log_rotation(path: str = ".run/ark_orders.log", backup_count: int = 7):
    """Setup daily log rotation on the root logger."""
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

        handler = TimedRotatingFileHandler(
            filename=path,
            when="midnight",
            interval=1,
            backupCount=backup_count,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logging.getLogger().addHandler(handler)

        logger.info(f"Log rotation configured (daily, keep {backup_count} days)")
        return handler

    except OSError as e:
        logger.error(f"Failed to setup log rotation: {e}")
        return None


class OrderAuditLog:
    """Append-only JSONL audit of order lifecycle events.

    A falsy ``directory`` disables writing; events are still logged.
    """

    def __init__(self, directory: Optional[str] = "logs/orders"):
        self.directory = directory or None
        self._lock = asyncio.Lock()
        if self.directory:
            os.makedirs(self.directory, exist_ok=True)

    @property
    def enabled(self) -> bool:
        return self.directory is not None

    def current_path(self) -> Optional[str]:
        if not self.directory:
            return None
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return os.path.join(self.directory, f"{today}.jsonl")

    async def record(
        self,
        event: str,
        operation: str,
        *,
        order_hash: Optional[str] = None,
        account: Optional[str] = None,
        status: Optional[str] = None,
        step: Optional[str] = None,
        transaction_hash: Optional[str] = None,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> OrderAuditRow:
        row: OrderAuditRow = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "operation": operation,
            "order_hash": order_hash,
            "account": account,
            "status": status,
            "step": step,
            "transaction_hash": transaction_hash,
            "error": error,
            "metadata": metadata,
        }
        logger.info(f"[audit] {event} {operation} {order_hash or '-'}")

        path = self.current_path()
        if path:
            # one writer at a time keeps rows whole
            async with self._lock:
                try:
                    with open(path, "a") as f:
                        f.write(json.dumps(row, default=str) + "\n")
                except OSError as e:
                    logger.error(f"[audit] Failed to write audit event: {e}")
        return row

    def tail(self, lines: int = 50) -> List[Dict[str, Any]]:
        """Get last N events from today's audit file."""
        path = self.current_path()
        if not path or not os.path.exists(path):
            return []
        with open(path, "r") as f:
            all_lines = f.readlines()
        return [json.loads(line) for line in all_lines[-lines:] if line.strip()]
