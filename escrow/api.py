from typing import Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .addressing import organization_address, require_address, voucher_address
from .config import configure_logging, get_settings
from .errors import (
    EscrowError, AccountNotFoundError, UnauthorizedError,
    AlreadyInitializedError, AlreadyMaintainerError, DuplicateVoucherError,
)
from .models import (
    InitializeOrganizationRequest, DepositRequest, MaintainerRequest, WithdrawRequest,
    CreateVoucherRequest, RedeemVoucherRequest, CancelVoucherRequest, ExpireVoucherRequest,
    FundWalletRequest, OrganizationAccount, OrganizationResponse, VoucherAccount,
    VoucherResponse, VoucherStatus, LedgerHistoryResponse, OrganizationSummary, WalletBalance,
)
from .service import LedgerService

STATUS_BY_ERROR = {
    AccountNotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    AlreadyInitializedError: status.HTTP_409_CONFLICT,
    AlreadyMaintainerError: status.HTTP_409_CONFLICT,
    DuplicateVoucherError: status.HTTP_409_CONFLICT,
}


def create_app(service: Optional[LedgerService] = None, root_path: str = "") -> FastAPI:
    app = FastAPI(
        title="Voucher Escrow API",
        description="Escrow ledger for organization-funded vouchers redeemable by GitHub identity",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    ledger_service = service or LedgerService()
    program_id = ledger_service.settings.program_id

    @app.exception_handler(EscrowError)
    async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
        code = STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
        return JSONResponse(status_code=code, content={"error": exc.code, "detail": exc.message})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "voucher-escrow"}

    @app.get("/addresses/organization/{org_external_id}", tags=["Addresses"])
    def derive_organization_address(org_external_id: int):
        return {"address": organization_address(org_external_id, program_id)}

    @app.get("/addresses/voucher/{voucher_id}", tags=["Addresses"])
    def derive_voucher_address(voucher_id: str):
        return {"address": voucher_address(voucher_id, program_id)}

    @app.post("/organizations", response_model=OrganizationResponse,
              status_code=status.HTTP_201_CREATED, tags=["Organizations"])
    def initialize_organization(request: InitializeOrganizationRequest) -> OrganizationResponse:
        return ledger_service.initialize_organization(request)

    @app.get("/organizations/{address}", response_model=OrganizationAccount, tags=["Organizations"])
    def get_organization(address: str) -> OrganizationAccount:
        return ledger_service.get_organization(address)

    @app.post("/organizations/{address}/deposit", response_model=OrganizationResponse, tags=["Organizations"])
    def deposit(address: str, request: DepositRequest) -> OrganizationResponse:
        _require_path_match("organization", address, request.organization)
        return ledger_service.deposit(request)

    @app.post("/organizations/{address}/maintainers", response_model=OrganizationResponse, tags=["Organizations"])
    def add_maintainer(address: str, request: MaintainerRequest) -> OrganizationResponse:
        _require_path_match("organization", address, request.organization)
        return ledger_service.add_maintainer(request)

    @app.delete("/organizations/{address}/maintainers/{maintainer}",
                response_model=OrganizationResponse, tags=["Organizations"])
    def remove_maintainer(address: str, maintainer: str, admin: str) -> OrganizationResponse:
        return ledger_service.remove_maintainer(
            MaintainerRequest(maintainer=maintainer, organization=address, admin=admin)
        )

    @app.post("/organizations/{address}/withdraw", response_model=OrganizationResponse, tags=["Organizations"])
    def withdraw(address: str, request: WithdrawRequest) -> OrganizationResponse:
        _require_path_match("organization", address, request.organization)
        return ledger_service.withdraw(request)

    @app.get("/organizations/{address}/vouchers", response_model=list[VoucherAccount], tags=["Organizations"])
    def list_vouchers(address: str, status: Optional[VoucherStatus] = None) -> list[VoucherAccount]:
        return ledger_service.list_vouchers(address, status)

    @app.get("/organizations/{address}/history", response_model=LedgerHistoryResponse, tags=["Organizations"])
    def get_history(
        address: str,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ) -> LedgerHistoryResponse:
        return ledger_service.get_history(address, limit, offset)

    @app.get("/organizations/{address}/summary", response_model=OrganizationSummary, tags=["Organizations"])
    def get_summary(address: str) -> OrganizationSummary:
        return ledger_service.get_summary(address)

    @app.post("/vouchers", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED, tags=["Vouchers"])
    def create_voucher(request: CreateVoucherRequest) -> VoucherResponse:
        return ledger_service.create_voucher(request)

    @app.get("/vouchers/{address}", response_model=VoucherAccount, tags=["Vouchers"])
    def get_voucher(address: str) -> VoucherAccount:
        return ledger_service.get_voucher(address)

    @app.post("/vouchers/{address}/redeem", response_model=VoucherResponse, tags=["Vouchers"])
    def redeem_voucher(address: str, request: RedeemVoucherRequest) -> VoucherResponse:
        _require_path_match("voucher", address, request.voucher)
        return ledger_service.redeem_voucher(request)

    @app.post("/vouchers/{address}/cancel", response_model=VoucherResponse, tags=["Vouchers"])
    def cancel_voucher(address: str, request: CancelVoucherRequest) -> VoucherResponse:
        _require_path_match("voucher", address, request.voucher)
        return ledger_service.cancel_voucher(request)

    @app.post("/vouchers/{address}/expire", response_model=VoucherResponse, tags=["Vouchers"])
    def expire_voucher(address: str, request: ExpireVoucherRequest) -> VoucherResponse:
        _require_path_match("voucher", address, request.voucher)
        return ledger_service.expire_voucher(request)

    @app.post("/wallets/{identity}/fund", response_model=WalletBalance, tags=["Wallets"])
    def fund_wallet(identity: str, request: FundWalletRequest) -> WalletBalance:
        return ledger_service.fund_wallet(identity, request)

    @app.get("/wallets/{identity}", response_model=WalletBalance, tags=["Wallets"])
    def get_wallet(identity: str) -> WalletBalance:
        return ledger_service.get_wallet_balance(identity)

    return app


def _require_path_match(slot: str, path_address: str, body_address: str) -> None:
    require_address(slot, body_address, path_address)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    configure_logging(get_settings())
    uvicorn.run(app, host="0.0.0.0", port=8000)
