import logging
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from .config import PlatformConfig, configure_logging
from .errors import PlatformError, StateConflict
from .models import (
    AccountSummary, AdminWithdrawRequest, AdminWithdrawResponse, CompleteTaskRequest,
    DepositRequest, DepositResponse, Game, HistoryResponse, LoginRequest,
    PlayGameRequest, PlayResponse, RegisterRequest, RegisterResponse,
    ResendCodeRequest, SpinResponse, SpinWheelRequest, Task, TaskResponse,
    VerifyAccountRequest, WithdrawRequest, WithdrawResponse,
)
from .service import PlatformService

logger = logging.getLogger(__name__)


def _http_error(exc: PlatformError) -> HTTPException:
    if isinstance(exc, StateConflict):
        logger.error("state conflict: %s", exc)
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal ledger error")
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def create_app(service: Optional[PlatformService] = None) -> FastAPI:
    if service is None:
        config = PlatformConfig.from_env()
        configure_logging(config.log_level)
        service = PlatformService(config)

    app = FastAPI(
        title="Points Ledger API",
        description="Points ledger and wagering engine with atomic settlements",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "points-ledger"}

    @app.post("/api/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def register(request: RegisterRequest) -> RegisterResponse:
        try:
            return service.register(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/verify-account", response_model=AccountSummary, tags=["Accounts"])
    def verify_account(request: VerifyAccountRequest) -> AccountSummary:
        try:
            return service.verify_account(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/resend-code", tags=["Accounts"])
    def resend_code(request: ResendCodeRequest):
        try:
            service.resend_code(request)
        except PlatformError as e:
            raise _http_error(e)
        return {"success": True}

    @app.post("/api/login", response_model=AccountSummary, tags=["Accounts"])
    def login(request: LoginRequest) -> AccountSummary:
        try:
            return service.login(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.get("/api/accounts/{account_id}", response_model=AccountSummary, tags=["Accounts"])
    def get_account(account_id: UUID) -> AccountSummary:
        try:
            return service.get_account(account_id)
        except PlatformError as e:
            raise _http_error(e)

    @app.put("/api/accounts/{account_id}/profile-picture", tags=["Accounts"])
    async def upload_profile_picture(account_id: UUID, filename: str, request: Request):
        data = await request.body()
        try:
            path = await run_in_threadpool(service.update_profile_picture, account_id, data, filename)
        except PlatformError as e:
            raise _http_error(e)
        return {"profile_picture": path}

    @app.get("/api/tasks", response_model=list[Task], tags=["Tasks"])
    def list_tasks() -> list[Task]:
        return service.list_tasks()

    @app.get("/api/offer-walls", tags=["Tasks"])
    def list_offer_walls() -> dict[str, str]:
        return service.list_offer_walls()

    @app.post("/api/complete-task", response_model=TaskResponse, tags=["Tasks"])
    def complete_task(request: CompleteTaskRequest) -> TaskResponse:
        try:
            return service.complete_task(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/spin-wheel", response_model=SpinResponse, tags=["Wheel"])
    def spin_wheel(request: SpinWheelRequest) -> SpinResponse:
        try:
            return service.spin_wheel(request.account_id)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/deposit", response_model=DepositResponse, tags=["Payments"])
    def deposit(request: DepositRequest) -> DepositResponse:
        try:
            return service.deposit(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/withdraw", response_model=WithdrawResponse, tags=["Payments"])
    def withdraw(request: WithdrawRequest) -> WithdrawResponse:
        try:
            return service.withdraw(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/deposits/{deposit_id}/retry", response_model=DepositResponse, tags=["Payments"])
    def retry_deposit(deposit_id: UUID) -> DepositResponse:
        try:
            return service.retry_deposit(deposit_id)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/withdrawals/{withdrawal_id}/retry", response_model=WithdrawResponse, tags=["Payments"])
    def retry_withdrawal(withdrawal_id: UUID) -> WithdrawResponse:
        try:
            return service.retry_withdrawal(withdrawal_id)
        except PlatformError as e:
            raise _http_error(e)

    @app.get("/api/games", response_model=list[Game], tags=["Games"])
    def list_games() -> list[Game]:
        return service.list_games()

    @app.post("/api/play", response_model=PlayResponse, tags=["Games"])
    def play_game(request: PlayGameRequest) -> PlayResponse:
        try:
            return service.play_game(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.post("/api/admin/withdraw-earnings", response_model=AdminWithdrawResponse, tags=["Admin"])
    def admin_withdraw_earnings(request: AdminWithdrawRequest) -> AdminWithdrawResponse:
        try:
            return service.admin_withdraw_earnings(request)
        except PlatformError as e:
            raise _http_error(e)

    @app.get("/api/user-history/{account_id}", response_model=HistoryResponse, tags=["History"])
    def user_history(
        account_id: UUID,
        limit: int = Query(50, ge=0),
        offset: int = Query(0, ge=0),
    ) -> HistoryResponse:
        try:
            return service.user_history(account_id, limit, offset)
        except PlatformError as e:
            raise _http_error(e)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
