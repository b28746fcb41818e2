"""
In-process notifications for committed wallet changes.

Readers that want a live view of a wallet (balance widgets, sync workers)
subscribe here instead of polling the tables. Events are published only after
the ledger write has committed, so a subscriber never sees a change that was
later rolled back.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletChanged:
    """Snapshot of a wallet and the entry that just changed it."""
    wallet_id: str
    user_id: str
    currency: str
    balance: int
    entry_id: str
    sequence: int
    amount_delta: int
    entry_type: str
    reference: Optional[str]
    reference_type: Optional[str]
    created_at: str


Subscriber = Callable[[WalletChanged], None]


class LedgerEventBus:
    """
    Fan-out of WalletChanged events.

    ``subscribe(callback)`` receives every event, ``subscribe(callback,
    wallet_id=...)`` only that wallet's. The returned callable unsubscribes.
    A failing subscriber is logged and skipped; it cannot undo the write.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[Subscriber, Optional[str]]] = []

    def subscribe(self, callback: Subscriber, wallet_id: Optional[str] = None) -> Callable[[], None]:
        entry = (callback, wallet_id)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: WalletChanged) -> None:
        with self._lock:
            targets = [cb for cb, wid in self._subscribers if wid is None or wid == event.wallet_id]
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Wallet event subscriber failed for wallet {event.wallet_id}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


# Default bus used by the HTTP app; tests build their own.
event_bus = LedgerEventBus()
