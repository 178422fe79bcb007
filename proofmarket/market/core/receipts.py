"""
Call receipt tracking.

Records the outcome of every top-level marketplace call so that clients can
look up why a call was rejected after the fact.
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any
import time
import logging
from threading import RLock

logger = logging.getLogger(__name__)


@dataclass
class CallReceipt:
    """
    Outcome of a marketplace call.

    Attributes:
        call_id: Unique id of the call
        method: Operation name (e.g. 'create_job')
        caller: Account that made the call
        status: 'pending', 'committed' or 'reverted'
        timestamp: When the receipt was last updated (unix timestamp)
        result: Return value of a committed call (e.g. new job id)
        error: Structured error of a reverted call
        events: Number of events published on commit
    """
    call_id: str
    method: str
    caller: str
    status: str = "pending"
    timestamp: int = 0
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    events: int = 0

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = int(time.time())

    def to_dict(self) -> dict:
        return {
            "call_id": self.call_id,
            "method": self.method,
            "caller": self.caller,
            "status": self.status,
            "timestamp": self.timestamp,
            "result": self.result,
            "error": self.error,
            "events": self.events,
        }


class CallReceiptStore:
    """In-memory receipt store, bounded to max_receipts."""

    def __init__(self, max_receipts: int = 10000):
        self.receipts: Dict[str, CallReceipt] = {}
        self.max_receipts = max_receipts
        self.lock = RLock()

    def begin(self, call_id: str, method: str, caller: str) -> CallReceipt:
        with self.lock:
            receipt = CallReceipt(call_id=call_id, method=method, caller=caller)
            self.receipts[call_id] = receipt
            if len(self.receipts) > self.max_receipts:
                self._cleanup_old_receipts()
            return receipt

    def mark_committed(self, call_id: str, result: Any = None, events: int = 0) -> Optional[CallReceipt]:
        with self.lock:
            receipt = self.receipts.get(call_id)
            if not receipt:
                return None
            receipt.status = "committed"
            receipt.result = result
            receipt.events = events
            receipt.timestamp = int(time.time())
            return receipt

    def mark_reverted(self, call_id: str, error: Exception) -> Optional[CallReceipt]:
        with self.lock:
            receipt = self.receipts.get(call_id)
            if not receipt:
                return None
            receipt.status = "reverted"
            if hasattr(error, "to_dict"):
                receipt.error = error.to_dict()
            else:
                receipt.error = {"code": "InternalError", "kind": "internal", "message": str(error), "details": {}}
            receipt.timestamp = int(time.time())
            return receipt

    def get(self, call_id: str) -> Optional[CallReceipt]:
        with self.lock:
            return self.receipts.get(call_id)

    def _cleanup_old_receipts(self) -> None:
        """Removes the oldest 10% of receipts."""
        num_to_remove = len(self.receipts) // 10
        sorted_receipts = sorted(self.receipts.items(), key=lambda x: x[1].timestamp)
        for call_id, _ in sorted_receipts[:num_to_remove]:
            del self.receipts[call_id]
        logger.info(f"Cleaned up {num_to_remove} old receipts (total: {len(self.receipts)})")

    def clear(self) -> None:
        """Clear all receipts (for testing)."""
        with self.lock:
            self.receipts.clear()
