import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional
from uuid import uuid4

from .addressing import U64_MAX, organization_address, require_address, voucher_address
from .attestation import AttestationVerifier, SignatureError
from .config import Settings, get_settings
from .errors import (
    AccountNotFoundError,
    AddressMismatchError,
    AlreadyInitializedError,
    AlreadyMaintainerError,
    BalanceOverflowError,
    DuplicateVoucherError,
    EscrowError,
    IdentityMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidMetadataError,
    InvalidProofError,
    InvalidStatusError,
    InvalidVoucherIdError,
    MaintainerListFullError,
    MetadataTooLongError,
    NotMaintainerError,
    UnauthorizedError,
    VoucherExpiredError,
    VoucherNotExpiredError,
)
from .models import (
    EventType,
    VoucherStatus,
    OrganizationAccount,
    VoucherAccount,
    LedgerEvent,
    WalletBalance,
    InitializeOrganizationRequest,
    DepositRequest,
    MaintainerRequest,
    CreateVoucherRequest,
    RedeemVoucherRequest,
    CancelVoucherRequest,
    ExpireVoucherRequest,
    WithdrawRequest,
    FundWalletRequest,
    OrganizationResponse,
    VoucherResponse,
    LedgerHistoryResponse,
    OrganizationSummary,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """State machine moving value between organization balances and voucher escrow.

    Each public mutation validates its account slots and authorization, then
    changes one or two accounts inside a single storage transaction.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        verifier: Optional[AttestationVerifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self.verifier = verifier or AttestationVerifier(
            secret=self.settings.attestation_key.encode(),
            tolerance_seconds=self.settings.attestation_tolerance_seconds,
        )
        self.clock = clock or _utcnow

    # Organization lifecycle

    def initialize_organization(self, request: InitializeOrganizationRequest) -> OrganizationResponse:
        with self._operation("initialize_organization"):
            expected = organization_address(request.org_external_id, self.settings.program_id)
            require_address("organization", request.organization, expected)
            if self.storage.account_exists(expected):
                raise AlreadyInitializedError(
                    f"Organization {request.org_external_id} is already initialized at {expected}"
                )

            org = OrganizationAccount(
                address=expected,
                org_external_id=request.org_external_id,
                admin=request.admin,
                balance=0,
                maintainers=[],
                total_vouchers_created=0,
                created_at=self.clock(),
            )
            self._save_organization(org)
            event = self._record_event(
                EventType.ORGANIZATION_INITIALIZED,
                organization=org.address,
                actor=request.admin,
                balance_after=0,
                details={"org_external_id": request.org_external_id},
            )

        logger.info("Organization escrow initialized for GitHub ID: %s", request.org_external_id)
        return OrganizationResponse(organization=org, event=event, message="Organization initialized")

    def deposit(self, request: DepositRequest) -> OrganizationResponse:
        with self._operation("deposit"):
            self._require_positive(request.amount)
            org = self._load_organization(request.organization)

            wallet = self.storage.wallet_balance(request.depositor)
            new_balance = self._checked_add(org.balance, request.amount, "Organization balance")
            if wallet < request.amount:
                raise InsufficientFundsError(
                    f"Depositor {request.depositor} holds {wallet}, cannot deposit {request.amount}"
                )

            self.storage.set_wallet(request.depositor, wallet - request.amount)
            org.balance = new_balance
            self._save_organization(org)
            event = self._record_event(
                EventType.DEPOSIT,
                organization=org.address,
                actor=request.depositor,
                amount=request.amount,
                balance_after=org.balance,
            )

        logger.info("Deposited %s. New balance: %s", request.amount, org.balance)
        return OrganizationResponse(organization=org, event=event, message="Deposit recorded")

    def add_maintainer(self, request: MaintainerRequest) -> OrganizationResponse:
        with self._operation("add_maintainer"):
            org = self._load_organization(request.organization)
            self._require_admin(org, request.admin)
            if request.maintainer in org.maintainers:
                raise AlreadyMaintainerError(
                    f"{request.maintainer} is already a maintainer of organization {org.address}"
                )
            if len(org.maintainers) >= self.settings.max_maintainers:
                raise MaintainerListFullError(
                    f"Organization {org.address} already has {self.settings.max_maintainers} maintainers"
                )

            org.maintainers.append(request.maintainer)
            self._save_organization(org)
            event = self._record_event(
                EventType.MAINTAINER_ADDED,
                organization=org.address,
                actor=request.admin,
                balance_after=org.balance,
                details={"maintainer": request.maintainer},
            )

        logger.info("Maintainer added: %s", request.maintainer)
        return OrganizationResponse(organization=org, event=event, message="Maintainer added")

    def remove_maintainer(self, request: MaintainerRequest) -> OrganizationResponse:
        with self._operation("remove_maintainer"):
            org = self._load_organization(request.organization)
            self._require_admin(org, request.admin)
            if request.maintainer not in org.maintainers:
                raise NotMaintainerError(
                    f"{request.maintainer} is not a maintainer of organization {org.address}"
                )

            org.maintainers.remove(request.maintainer)
            self._save_organization(org)
            event = self._record_event(
                EventType.MAINTAINER_REMOVED,
                organization=org.address,
                actor=request.admin,
                balance_after=org.balance,
                details={"maintainer": request.maintainer},
            )

        logger.info("Maintainer removed: %s", request.maintainer)
        return OrganizationResponse(organization=org, event=event, message="Maintainer removed")

    def withdraw(self, request: WithdrawRequest) -> OrganizationResponse:
        with self._operation("withdraw"):
            self._require_positive(request.amount)
            org = self._load_organization(request.organization)
            self._require_admin(org, request.admin)
            if org.balance < request.amount:
                raise InsufficientFundsError(
                    f"Organization balance {org.balance} is below withdrawal of {request.amount}"
                )

            wallet = self._checked_add(
                self.storage.wallet_balance(request.admin), request.amount, "Admin wallet"
            )
            self.storage.set_wallet(request.admin, wallet)
            org.balance -= request.amount
            self._save_organization(org)
            event = self._record_event(
                EventType.WITHDRAWAL,
                organization=org.address,
                actor=request.admin,
                amount=request.amount,
                balance_after=org.balance,
            )

        logger.info("Withdrawn %s. New balance: %s", request.amount, org.balance)
        return OrganizationResponse(organization=org, event=event, message="Withdrawal recorded")

    # Voucher lifecycle

    def create_voucher(self, request: CreateVoucherRequest) -> VoucherResponse:
        with self._operation("create_voucher"):
            self._require_positive(request.amount)
            self._validate_voucher_fields(request.voucher_id, request.metadata)

            org = self._load_organization(request.organization)
            self._require_maintainer(org, request.maintainer)
            expected = voucher_address(request.voucher_id, self.settings.program_id)
            require_address("voucher", request.voucher, expected)
            if self.storage.account_exists(expected):
                raise DuplicateVoucherError(f"Voucher {request.voucher_id!r} already exists at {expected}")
            if org.balance < request.amount:
                raise InsufficientFundsError(
                    f"Organization balance {org.balance} cannot cover voucher amount {request.amount}"
                )

            now = self.clock()
            voucher = VoucherAccount(
                address=expected,
                voucher_id=request.voucher_id,
                organization=org.address,
                recipient_external_id=request.recipient_external_id,
                amount=request.amount,
                metadata=request.metadata,
                status=VoucherStatus.OPEN,
                created_at=now,
                expires_at=now + timedelta(seconds=self.settings.voucher_ttl_seconds),
            )
            org.balance -= request.amount
            org.total_vouchers_created += 1
            self._save_organization(org)
            self._save_voucher(voucher)
            event = self._record_event(
                EventType.VOUCHER_CREATED,
                organization=org.address,
                voucher=voucher.address,
                actor=request.maintainer,
                amount=request.amount,
                balance_after=org.balance,
                details={
                    "voucher_id": request.voucher_id,
                    "recipient_external_id": request.recipient_external_id,
                },
            )

        logger.info(
            "Voucher created: %s for recipient GitHub ID: %s",
            request.voucher_id, request.recipient_external_id,
        )
        return VoucherResponse(voucher=voucher, organization=org, event=event, message="Voucher created")

    def redeem_voucher(self, request: RedeemVoucherRequest) -> VoucherResponse:
        with self._operation("redeem_voucher"):
            voucher = self._load_voucher(request.voucher)
            if not voucher.is_open():
                raise InvalidStatusError(
                    f"Voucher {voucher.voucher_id!r} is {voucher.status.value}; only OPEN vouchers can be redeemed"
                )
            now = self.clock()
            if voucher.is_expired(now):
                raise VoucherExpiredError(
                    f"Voucher {voucher.voucher_id!r} expired at {voucher.expires_at.isoformat()}"
                )

            proof = request.proof
            try:
                self.verifier.verify(
                    voucher=voucher.address,
                    recipient=request.recipient,
                    github_id=proof.github_id,
                    issued_at=proof.issued_at,
                    signature=proof.signature,
                    now=int(now.timestamp()),
                )
            except SignatureError as e:
                raise InvalidProofError(f"Recipient proof rejected: {e}") from e
            if proof.github_id != voucher.recipient_external_id:
                raise IdentityMismatchError(
                    f"Proof is for GitHub ID {proof.github_id}, voucher {voucher.voucher_id!r} "
                    f"is for {voucher.recipient_external_id}"
                )

            org = self._load_organization(voucher.organization)
            self.storage.set_wallet(request.recipient, self._checked_add(
                self.storage.wallet_balance(request.recipient), voucher.amount, "Recipient wallet"
            ))
            voucher.status = VoucherStatus.REDEEMED
            voucher.closed_at = now
            voucher.redeemed_by = request.recipient
            self._save_voucher(voucher)
            event = self._record_event(
                EventType.VOUCHER_REDEEMED,
                organization=org.address,
                voucher=voucher.address,
                actor=request.recipient,
                amount=voucher.amount,
                balance_after=org.balance,
                details={"github_id": proof.github_id},
            )

        logger.info("Voucher claimed by: %s", request.recipient)
        return VoucherResponse(voucher=voucher, organization=org, event=event, message="Voucher redeemed")

    def cancel_voucher(self, request: CancelVoucherRequest) -> VoucherResponse:
        with self._operation("cancel_voucher"):
            org = self._load_organization(request.organization)
            self._require_maintainer(org, request.maintainer)
            voucher = self._load_owned_voucher(org, request.voucher)
            self._require_open(voucher, "cancelled")
            event = self._close_and_refund(
                org, voucher, VoucherStatus.CANCELLED, EventType.VOUCHER_CANCELLED, actor=request.maintainer
            )

        logger.info("Voucher cancelled: %s", voucher.voucher_id)
        return VoucherResponse(voucher=voucher, organization=org, event=event, message="Voucher cancelled")

    def expire_voucher(self, request: ExpireVoucherRequest) -> VoucherResponse:
        with self._operation("expire_voucher"):
            org = self._load_organization(request.organization)
            voucher = self._load_owned_voucher(org, request.voucher)
            self._require_open(voucher, "expired")
            if not voucher.is_expired(self.clock()):
                raise VoucherNotExpiredError(
                    f"Voucher {voucher.voucher_id!r} does not expire until {voucher.expires_at.isoformat()}"
                )
            event = self._close_and_refund(org, voucher, VoucherStatus.EXPIRED, EventType.VOUCHER_EXPIRED)

        logger.info("Voucher expired: %s", voucher.voucher_id)
        return VoucherResponse(voucher=voucher, organization=org, event=event, message="Voucher expired")

    # Host helpers

    def fund_wallet(self, identity: str, request: FundWalletRequest) -> WalletBalance:
        with self._operation("fund_wallet"):
            if not self.settings.faucet_enabled:
                raise UnauthorizedError("Wallet faucet is disabled")
            self._require_positive(request.amount)
            balance = self._checked_add(self.storage.wallet_balance(identity), request.amount, "Wallet")
            self.storage.set_wallet(identity, balance)

        logger.info("Funded wallet %s with %s", identity, request.amount)
        return WalletBalance(identity=identity, balance=balance)

    # Reads

    def get_organization(self, address: str) -> OrganizationAccount:
        with self.storage.reading():
            return self._load_organization(address)

    def get_voucher(self, address: str) -> VoucherAccount:
        with self.storage.reading():
            return self._load_voucher(address)

    def list_vouchers(self, organization: str, status: Optional[VoucherStatus] = None) -> list[VoucherAccount]:
        with self.storage.reading():
            self._load_organization(organization)
            vouchers = [
                VoucherAccount(**v) for v in self.storage.vouchers.values()
                if v["organization"] == organization and (status is None or v["status"] == status)
            ]
        vouchers.sort(key=lambda v: v.created_at)
        return vouchers

    def get_wallet_balance(self, identity: str) -> WalletBalance:
        with self.storage.reading():
            return WalletBalance(identity=identity, balance=self.storage.wallet_balance(identity))

    def get_history(self, organization: str, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        with self.storage.reading():
            org = self._load_organization(organization)
            all_events = [
                LedgerEvent(**e) for e in self.storage.events.values()
                if e["organization"] == organization
            ]
        # Newest first; storage keeps insertion order.
        all_events.reverse()
        paginated = all_events[offset:offset + limit]

        return LedgerHistoryResponse(
            organization=organization,
            events=paginated,
            total_count=len(all_events),
            current_balance=org.balance,
        )

    def get_summary(self, organization: str) -> OrganizationSummary:
        with self.storage.reading():
            org = self._load_organization(organization)
            events = [e for e in self.storage.events.values() if e["organization"] == organization]
            open_vouchers = [
                v for v in self.storage.vouchers.values()
                if v["organization"] == organization and v["status"] == VoucherStatus.OPEN
            ]

        def total(event_type: EventType) -> int:
            return sum(e["amount"] for e in events if e["event_type"] == event_type)

        deposited = total(EventType.DEPOSIT)
        redeemed = total(EventType.VOUCHER_REDEEMED)
        withdrawn = total(EventType.WITHDRAWAL)
        open_escrow = sum(v["amount"] for v in open_vouchers)

        return OrganizationSummary(
            organization=organization,
            balance=org.balance,
            open_escrow=open_escrow,
            open_vouchers=len(open_vouchers),
            total_deposited=deposited,
            total_redeemed=redeemed,
            total_withdrawn=withdrawn,
            conserved=org.balance + open_escrow == deposited - redeemed - withdrawn,
        )

    # Internals

    @contextmanager
    def _operation(self, name: str) -> Iterator[InMemoryStorage]:
        try:
            with self.storage.transaction() as storage:
                yield storage
        except EscrowError as e:
            logger.warning("%s rejected: %s: %s", name, e.code, e.message)
            raise

    def _load_organization(self, address: str) -> OrganizationAccount:
        data = self.storage.organizations.get(address)
        if not data:
            raise AccountNotFoundError(f"Organization account {address} is not initialized")
        org = OrganizationAccount(**data)
        require_address(
            "organization", address, organization_address(org.org_external_id, self.settings.program_id)
        )
        return org

    def _load_voucher(self, address: str) -> VoucherAccount:
        data = self.storage.vouchers.get(address)
        if not data:
            raise AccountNotFoundError(f"Voucher account {address} does not exist")
        voucher = VoucherAccount(**data)
        require_address("voucher", address, voucher_address(voucher.voucher_id, self.settings.program_id))
        return voucher

    def _load_owned_voucher(self, org: OrganizationAccount, address: str) -> VoucherAccount:
        voucher = self._load_voucher(address)
        if voucher.organization != org.address:
            raise AddressMismatchError(
                f"Voucher {voucher.voucher_id!r} belongs to organization {voucher.organization}, not {org.address}"
            )
        return voucher

    def _save_organization(self, org: OrganizationAccount) -> None:
        self.storage.put_organization(org.address, org.model_dump())

    def _save_voucher(self, voucher: VoucherAccount) -> None:
        self.storage.put_voucher(voucher.address, voucher.model_dump())

    def _close_and_refund(
        self,
        org: OrganizationAccount,
        voucher: VoucherAccount,
        status: VoucherStatus,
        event_type: EventType,
        actor: Optional[str] = None,
    ) -> LedgerEvent:
        org.balance = self._checked_add(org.balance, voucher.amount, "Organization balance")
        voucher.status = status
        voucher.closed_at = self.clock()
        self._save_organization(org)
        self._save_voucher(voucher)
        return self._record_event(
            event_type,
            organization=org.address,
            voucher=voucher.address,
            actor=actor,
            amount=voucher.amount,
            balance_after=org.balance,
        )

    def _record_event(
        self,
        event_type: EventType,
        *,
        organization: str,
        balance_after: int,
        voucher: Optional[str] = None,
        actor: Optional[str] = None,
        amount: int = 0,
        details: Optional[dict] = None,
    ) -> LedgerEvent:
        event = LedgerEvent(
            id=uuid4(),
            event_type=event_type,
            organization=organization,
            voucher=voucher,
            actor=actor,
            amount=amount,
            balance_after=balance_after,
            created_at=self.clock(),
            details=details or {},
        )
        self.storage.append_event(event.id, event.model_dump())
        return event

    def _require_admin(self, org: OrganizationAccount, identity: str) -> None:
        if identity != org.admin:
            raise UnauthorizedError(f"{identity} is not the admin of organization {org.address}")

    @staticmethod
    def _require_maintainer(org: OrganizationAccount, identity: str) -> None:
        if not org.is_authorized(identity):
            raise UnauthorizedError(
                f"{identity} is neither admin nor maintainer of organization {org.address}"
            )

    @staticmethod
    def _require_open(voucher: VoucherAccount, action: str) -> None:
        if not voucher.is_open():
            raise InvalidStatusError(
                f"Voucher {voucher.voucher_id!r} is {voucher.status.value}; only OPEN vouchers can be {action}"
            )

    @staticmethod
    def _require_positive(amount: int) -> None:
        if amount == 0:
            raise InvalidAmountError("Amount must be greater than zero")

    @staticmethod
    def _checked_add(current: int, amount: int, what: str) -> int:
        total = current + amount
        if total > U64_MAX:
            raise BalanceOverflowError(f"{what} would overflow: {current} + {amount} exceeds {U64_MAX}")
        return total

    def _validate_voucher_fields(self, voucher_id: str, metadata: str) -> None:
        try:
            id_len = len(voucher_id.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise InvalidVoucherIdError(f"Voucher id is not valid UTF-8 text: {e.reason} at position {e.start}") from e
        if id_len == 0 or id_len > self.settings.max_voucher_id_len:
            raise InvalidVoucherIdError(
                f"Voucher id must be 1 to {self.settings.max_voucher_id_len} bytes, got {id_len}"
            )
        try:
            metadata_len = len(metadata.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise InvalidMetadataError(f"Metadata is not valid UTF-8 text: {e.reason} at position {e.start}") from e
        if metadata_len > self.settings.max_metadata_len:
            raise MetadataTooLongError(
                f"Metadata is {metadata_len} bytes, max is {self.settings.max_metadata_len}"
            )
