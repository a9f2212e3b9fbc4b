"""
Voucher Escrow Ledger

This module provides:
- Deterministic account addressing (no lookup registry)
- Organization accounts with pooled balances and maintainer sets
- Voucher escrow: open → redeemed / cancelled / expired
- All-or-nothing operations with an audit trail of ledger events
"""

from .addressing import derive_address, organization_address, voucher_address
from .errors import EscrowError
from .models import (
    VoucherStatus,
    EventType,
    OrganizationAccount,
    VoucherAccount,
    LedgerEvent,
)
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "derive_address",
    "organization_address",
    "voucher_address",
    "EscrowError",
    "VoucherStatus",
    "EventType",
    "OrganizationAccount",
    "VoucherAccount",
    "LedgerEvent",
    "LedgerService",
    "InMemoryStorage",
]
