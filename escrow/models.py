from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from .addressing import U64_MAX


class VoucherStatus(str, Enum):
    OPEN = "OPEN"
    REDEEMED = "REDEEMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class EventType(str, Enum):
    ORGANIZATION_INITIALIZED = "ORGANIZATION_INITIALIZED"
    DEPOSIT = "DEPOSIT"
    MAINTAINER_ADDED = "MAINTAINER_ADDED"
    MAINTAINER_REMOVED = "MAINTAINER_REMOVED"
    VOUCHER_CREATED = "VOUCHER_CREATED"
    VOUCHER_REDEEMED = "VOUCHER_REDEEMED"
    VOUCHER_CANCELLED = "VOUCHER_CANCELLED"
    VOUCHER_EXPIRED = "VOUCHER_EXPIRED"
    WITHDRAWAL = "WITHDRAWAL"


class InitializeOrganizationRequest(BaseModel):
    org_external_id: int = Field(..., ge=0, le=U64_MAX, description="GitHub organization id")
    organization: str = Field(..., description="Derived organization address")
    admin: str = Field(..., description="Signing identity, becomes the admin")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "org_external_id": 12345,
            "organization": "<derived organization address>",
            "admin": "admin-wallet",
        }
    })


class DepositRequest(BaseModel):
    amount: int = Field(..., ge=0, le=U64_MAX)
    organization: str
    depositor: str


class MaintainerRequest(BaseModel):
    maintainer: str = Field(..., min_length=1)
    organization: str
    admin: str


class CreateVoucherRequest(BaseModel):
    voucher_id: str
    recipient_external_id: int = Field(..., ge=0, le=U64_MAX, description="GitHub user id of the claimant")
    amount: int = Field(..., ge=0, le=U64_MAX)
    metadata: str = Field(default="", description="Opaque, never parsed by the ledger")
    organization: str
    voucher: str
    maintainer: str

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "voucher_id": "v1",
            "recipient_external_id": 67890,
            "amount": 100_000_000,
            "metadata": "{\"repo\":\"owner/repo\",\"pr\":123}",
            "organization": "<derived organization address>",
            "voucher": "<derived voucher address>",
            "maintainer": "maintainer-wallet",
        }
    })


class RecipientProof(BaseModel):
    """Attestation from the identity bridge that ``recipient`` owns ``github_id``."""
    github_id: int = Field(..., ge=0, le=U64_MAX)
    issued_at: int = Field(..., description="Unix timestamp the proof was signed at")
    signature: str


class RedeemVoucherRequest(BaseModel):
    proof: RecipientProof
    voucher: str
    recipient: str


class CancelVoucherRequest(BaseModel):
    organization: str
    voucher: str
    maintainer: str


class ExpireVoucherRequest(BaseModel):
    organization: str
    voucher: str


class WithdrawRequest(BaseModel):
    amount: int = Field(..., ge=0, le=U64_MAX)
    organization: str
    admin: str


class FundWalletRequest(BaseModel):
    amount: int = Field(..., ge=0, le=U64_MAX)


class OrganizationAccount(BaseModel):
    address: str
    org_external_id: int
    admin: str
    balance: int = Field(default=0, ge=0, le=U64_MAX)
    maintainers: list[str] = Field(default_factory=list)
    total_vouchers_created: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_authorized(self, identity: str) -> bool:
        # The admin acts as a maintainer by role even when not listed.
        return identity == self.admin or identity in self.maintainers


class VoucherAccount(BaseModel):
    address: str
    voucher_id: str
    organization: str
    recipient_external_id: int
    amount: int = Field(..., gt=0, le=U64_MAX)
    metadata: str = ""
    status: VoucherStatus = VoucherStatus.OPEN
    created_at: datetime
    expires_at: datetime
    closed_at: Optional[datetime] = None
    redeemed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_open(self) -> bool:
        return self.status == VoucherStatus.OPEN

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class LedgerEvent(BaseModel):
    id: UUID
    event_type: EventType
    organization: str
    voucher: Optional[str] = None
    actor: Optional[str] = None
    amount: int = 0
    balance_after: int
    created_at: datetime
    details: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class WalletBalance(BaseModel):
    identity: str
    balance: int


class OrganizationResponse(BaseModel):
    organization: OrganizationAccount
    event: Optional[LedgerEvent] = None
    message: str


class VoucherResponse(BaseModel):
    voucher: VoucherAccount
    organization: Optional[OrganizationAccount] = None
    event: Optional[LedgerEvent] = None
    message: str


class LedgerHistoryResponse(BaseModel):
    organization: str
    events: list[LedgerEvent]
    total_count: int
    current_balance: int


class OrganizationSummary(BaseModel):
    organization: str
    balance: int
    open_escrow: int
    open_vouchers: int
    total_deposited: int
    total_redeemed: int
    total_withdrawn: int
    conserved: bool
