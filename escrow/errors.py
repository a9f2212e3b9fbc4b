class EscrowError(Exception):
    """Base class for ledger failures.

    ``code`` is stable and safe to show to API clients; the message names the
    check that failed.
    """

    code = "EscrowError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidSeedError(EscrowError):
    code = "InvalidSeed"


class AccountNotFoundError(EscrowError):
    code = "AccountNotFound"


class AlreadyInitializedError(EscrowError):
    code = "AlreadyInitialized"


class AddressMismatchError(EscrowError):
    code = "AddressMismatch"


class UnauthorizedError(EscrowError):
    code = "Unauthorized"


class InvalidAmountError(EscrowError):
    code = "InvalidAmount"


class BalanceOverflowError(EscrowError):
    code = "Overflow"


class InsufficientFundsError(EscrowError):
    code = "InsufficientFunds"


class AlreadyMaintainerError(EscrowError):
    code = "AlreadyMaintainer"


class NotMaintainerError(EscrowError):
    code = "NotMaintainer"


class MaintainerListFullError(EscrowError):
    code = "MaintainerListFull"


class InvalidVoucherIdError(EscrowError):
    code = "InvalidVoucherId"


class MetadataTooLongError(EscrowError):
    code = "MetadataTooLong"


class InvalidMetadataError(EscrowError):
    code = "InvalidMetadata"


class DuplicateVoucherError(EscrowError):
    code = "DuplicateVoucher"


class InvalidStatusError(EscrowError):
    code = "InvalidStatus"


class VoucherExpiredError(EscrowError):
    code = "VoucherExpired"


class VoucherNotExpiredError(EscrowError):
    code = "VoucherNotExpired"


class InvalidProofError(EscrowError):
    code = "InvalidProof"


class IdentityMismatchError(EscrowError):
    code = "IdentityMismatch"
