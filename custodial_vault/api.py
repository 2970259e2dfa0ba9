"""
FastAPI REST API Module

HTTP transport for the custodial vault. The caller identity is taken from
the ``X-Caller`` header set by the upstream authenticating proxy, and every
request is routed through the VaultGateway.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .config import VaultConfig, get_config
from .errors import (
    ExternalDependencyError, ReentrancyDetected, UnknownOperation, VaultError,
    VaultIntegrityError
)
from .events import EventDispatcher, EventLog
from .gateway import Call, VaultGateway
from .ledger import CustodialLedger
from .logging_config import get_logger, setup_logging
from .storage import LedgerStore, create_store
from .transfer import TransferBoundary, create_transfer


class DepositRequest(BaseModel):
    value: int = Field(..., description="Value attached to the deposit, in smallest units")


class WithdrawRequest(BaseModel):
    amount: int = Field(..., description="Amount to withdraw, in smallest units")


class CallRequest(BaseModel):
    operation: Optional[str] = Field(None, description="Operation name; empty for a plain value transfer")
    value: int = Field(0, description="Value attached to the call")
    arguments: Dict[str, Any] = Field(default_factory=dict)


class VaultSystem:
    """Vault components wired together from configuration"""

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        transfer: Optional[TransferBoundary] = None,
        store: Optional[LedgerStore] = None
    ):
        self.config = config or get_config()
        self.store = store if store is not None else create_store(self.config)
        self.transfer = transfer if transfer is not None else create_transfer(self.config)
        self.event_dispatcher = EventDispatcher()
        self.event_log = EventLog(max_events=1000).attach(self.event_dispatcher)
        self.ledger = CustodialLedger.from_config(
            self.config, self.transfer, store=self.store,
            event_dispatcher=self.event_dispatcher
        )
        self.gateway = VaultGateway(self.ledger)

    def close(self) -> None:
        self.store.close()
        close = getattr(self.transfer, "close", None)
        if close:
            close()


def error_status(error: VaultError) -> int:
    """HTTP status for a vault error"""
    if isinstance(error, UnknownOperation):
        return 404
    if isinstance(error, ReentrancyDetected):
        return 409
    if isinstance(error, ExternalDependencyError):
        return 502
    if isinstance(error, VaultIntegrityError):
        return 500
    return 400


def get_system(request: Request) -> VaultSystem:
    return request.app.state.system


def _submit(system: VaultSystem, call: Call) -> Dict[str, Any]:
    return system.gateway.submit(call).to_dict()


# Caller identity recorded for unauthenticated reads
READER = "anonymous"


def _read(system: VaultSystem, operation: str, **arguments) -> Any:
    return system.gateway.submit(Call(caller=READER, operation=operation, arguments=arguments)).value


def create_app(system: Optional[VaultSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or VaultSystem()
    setup_logging(system.config.log_level, fmt=system.config.log_format)
    logger = get_logger("vault.api")

    app = FastAPI(
        title="Custodial Vault API",
        description="Single-asset custodial ledger with capped deposits and limited withdrawals",
        version=__version__
    )
    app.state.system = system

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "custodial_vault",
            "version": __version__
        }

    @app.get("/config")
    def get_limits(system: VaultSystem = Depends(get_system)):
        """Immutable ledger limits"""
        return {
            "withdrawal_limit": system.ledger.withdrawal_limit,
            "bank_cap": system.ledger.bank_cap
        }

    # Endpoints that touch the ledger are sync; FastAPI runs them in its
    # threadpool and the gateway serializes them.

    @app.post("/deposit")
    def deposit(
        request: DepositRequest,
        caller: str = Header(..., alias="X-Caller"),
        system: VaultSystem = Depends(get_system)
    ):
        """Deposit the attached value into the caller's account"""
        return _submit(system, Call(caller=caller, operation="deposit", value=request.value))

    @app.post("/withdraw")
    def withdraw(
        request: WithdrawRequest,
        caller: str = Header(..., alias="X-Caller"),
        system: VaultSystem = Depends(get_system)
    ):
        """Withdraw from the caller's account to the caller"""
        return _submit(system, Call(caller=caller, operation="withdraw",
                                    arguments={"amount": request.amount}))

    @app.post("/calls")
    def submit_call(
        request: CallRequest,
        caller: str = Header(..., alias="X-Caller"),
        system: VaultSystem = Depends(get_system)
    ):
        """Generic call routing, including plain value transfers"""
        return _submit(system, Call(caller=caller, operation=request.operation,
                                    value=request.value, arguments=request.arguments))

    # Reads are routed through the gateway as well so they only ever see
    # committed state; during another client's payout they answer 409.

    @app.get("/accounts/{account}/balance")
    def get_balance(account: str, system: VaultSystem = Depends(get_system)):
        """Balance of an account; unknown accounts read as zero"""
        balance = _read(system, "get_balance", account=account)
        return {"account": account, "balance": balance}

    @app.get("/accounts/{account}/statistics")
    def get_user_statistics(account: str, system: VaultSystem = Depends(get_system)):
        """Balance and operation counters of an account"""
        stats = _read(system, "get_user_statistics", account=account)
        return {"account": account, **asdict(stats)}

    @app.get("/statistics")
    def get_vault_statistics(system: VaultSystem = Depends(get_system)):
        """Vault-wide balance and counters"""
        stats = _read(system, "get_vault_statistics")
        return {**asdict(stats), "remaining_capacity": system.ledger.bank_cap - stats.total_balance}

    @app.get("/deposit-allowed")
    def is_deposit_allowed(
        amount: int = Query(..., description="Amount to test against the bank cap"),
        system: VaultSystem = Depends(get_system)
    ):
        """Whether a deposit of ``amount`` would fit under the bank cap"""
        return {"amount": amount, "allowed": _read(system, "is_deposit_allowed", amount=amount)}

    @app.get("/events")
    def list_events(
        limit: int = Query(100, ge=1, le=1000),
        system: VaultSystem = Depends(get_system)
    ):
        """Most recent committed vault events"""
        events = system.event_log.events[-limit:]
        return {"events": [e.to_dict() for e in events], "count": len(events)}

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "custodial_vault.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
