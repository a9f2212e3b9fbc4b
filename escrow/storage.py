import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import UUID

logger = logging.getLogger(__name__)

_MISSING = object()


class InMemoryStorage:
    """Keyed account records plus the wallet balances of plain identities.

    Every ledger operation runs inside ``transaction()``, which stands in for the
    execution host: callers are serialized, and writes made through the ``put_*``
    methods are journaled so they can be undone if the operation raises. No
    partial effect is ever observable.
    """

    def __init__(self):
        self.organizations: dict[str, dict] = {}
        self.vouchers: dict[str, dict] = {}
        self.wallets: dict[str, int] = {}
        self.events: dict[UUID, dict] = {}
        self._lock = threading.RLock()
        self._journal: Optional[list[tuple[dict, object, object]]] = None

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            if self._journal is not None:
                yield self
                return

            self._journal = []
            try:
                yield self
            except BaseException:
                self._rollback()
                raise
            finally:
                self._journal = None

    @contextmanager
    def reading(self) -> Iterator["InMemoryStorage"]:
        """Serialize a read against writers without journaling anything."""
        with self._lock:
            yield self

    def put_organization(self, address: str, data: dict) -> None:
        self._write(self.organizations, address, data)

    def put_voucher(self, address: str, data: dict) -> None:
        self._write(self.vouchers, address, data)

    def set_wallet(self, identity: str, balance: int) -> None:
        self._write(self.wallets, identity, balance)

    def append_event(self, event_id: UUID, data: dict) -> None:
        self._write(self.events, event_id, data)

    def account_exists(self, address: str) -> bool:
        return address in self.organizations or address in self.vouchers

    def wallet_balance(self, identity: str) -> int:
        return self.wallets.get(identity, 0)

    def _write(self, table: dict, key: object, value: object) -> None:
        if self._journal is not None:
            self._journal.append((table, key, table.get(key, _MISSING)))
        table[key] = value

    def _rollback(self) -> None:
        for table, key, previous in reversed(self._journal):
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous
        logger.debug("transaction rolled back %d writes", len(self._journal))
