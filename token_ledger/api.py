"""
FastAPI REST API Module

HTTP host for the token ledger. The caller identity of every command is
read from a trusted header set by the authenticating gateway in front of
this service; the API does no authentication of its own.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .accounts import AccountId
from .config import get_config
from .events import LedgerEvent
from .ledger import LedgerError, AmountOutOfRangeError
from .logging_config import setup_logging
from .service import TokenService, LedgerAlreadyInitializedError, LedgerNotInitializedError
from .storage import create_storage


# Pydantic models for API requests
class CreateTokenRequest(BaseModel):
    initial_supply: str = Field(..., description="Unsigned integer amount as string")


class TransferRequest(BaseModel):
    to: str = Field(..., description="Recipient account (hex)")
    value: str = Field(..., description="Unsigned integer amount as string")


class ApproveRequest(BaseModel):
    spender: str = Field(..., description="Spender account (hex)")
    value: str = Field(..., description="New allowance as string; replaces any previous allowance")


class TransferFromRequest(BaseModel):
    from_account: str = Field(..., description="Owner account being debited (hex)")
    to: str = Field(..., description="Recipient account (hex)")
    value: str = Field(..., description="Unsigned integer amount as string")


_token_service: Optional[TokenService] = None


def build_token_service() -> TokenService:
    """Build the service from configuration, creating the ledger if configured to"""
    config = get_config()
    storage = create_storage(config.storage_backend, config.database_path)
    service = TokenService(storage, log_events=config.enable_event_logging)

    if not service.is_initialized and config.initial_supply is not None and config.creator_account:
        service.create(
            config.initial_supply,
            AccountId.from_hex(config.creator_account),
            amount_bits=config.amount_bits
        )
    return service


def get_token_service() -> TokenService:
    global _token_service
    if _token_service is None:
        _token_service = build_token_service()
    return _token_service


def get_caller(request: Request) -> AccountId:
    """Identity of the authenticated caller, as forwarded by the gateway"""
    header = get_config().caller_header
    value = request.headers.get(header)
    if not value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Missing {header} header")
    try:
        return AccountId.from_hex(value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


def parse_account(value: str) -> AccountId:
    try:
        return AccountId.from_hex(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def parse_amount(value: str) -> int:
    text = value.strip()
    if not (text.isascii() and text.isdigit()):
        raise HTTPException(
            status_code=422,
            detail=f"Amount must be an unsigned integer string, got {value!r}"
        )
    try:
        return int(text)
    except ValueError:
        # digit strings past the interpreter's int conversion limit
        raise HTTPException(status_code=422, detail="Amount is outside the supported range")


def events_response(events: List[LedgerEvent]) -> Dict[str, Any]:
    return {"events": [event.to_dict() for event in events]}


def run_command(command) -> Dict[str, Any]:
    """Run a service command and translate its failures to HTTP errors"""
    try:
        return events_response(command())
    except LedgerError as e:
        raise HTTPException(status_code=400, detail={"error": e.code, "message": str(e)})
    except AmountOutOfRangeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LedgerNotInitializedError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


def require_initialized(service: TokenService) -> None:
    if not service.is_initialized:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Token ledger has not been created")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Token Ledger API",
        description="Fixed-supply fungible token ledger with delegated transfers",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check(service: TokenService = Depends(get_token_service)):
        """Health check endpoint"""
        return {
            "status": "healthy",
            "ledger_initialized": service.is_initialized,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.post("/token", status_code=status.HTTP_201_CREATED)
    async def create_token(
        request: CreateTokenRequest,
        caller: AccountId = Depends(get_caller),
        service: TokenService = Depends(get_token_service)
    ):
        """Create the ledger; the caller receives the whole supply"""
        supply = parse_amount(request.initial_supply)
        try:
            events = service.create(supply, caller, amount_bits=get_config().amount_bits)
        except LedgerAlreadyInitializedError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except AmountOutOfRangeError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return events_response(events)

    @app.get("/token/total-supply")
    async def total_supply(service: TokenService = Depends(get_token_service)):
        require_initialized(service)
        return {"total_supply": str(service.total_supply())}

    @app.get("/token/balances/{account}")
    async def balance_of(account: str, service: TokenService = Depends(get_token_service)):
        require_initialized(service)
        account_id = parse_account(account)
        return {"account": account_id.hex, "balance": str(service.balance_of(account_id))}

    @app.get("/token/allowances/{owner}/{spender}")
    async def allowance_of(owner: str, spender: str, service: TokenService = Depends(get_token_service)):
        require_initialized(service)
        owner_id = parse_account(owner)
        spender_id = parse_account(spender)
        return {
            "owner": owner_id.hex,
            "spender": spender_id.hex,
            "allowance": str(service.allowance_of(owner_id, spender_id))
        }

    @app.post("/token/transfer")
    async def transfer(
        request: TransferRequest,
        caller: AccountId = Depends(get_caller),
        service: TokenService = Depends(get_token_service)
    ):
        """Transfer from the caller's own balance"""
        to = parse_account(request.to)
        value = parse_amount(request.value)
        return run_command(lambda: service.transfer(caller, to, value))

    @app.post("/token/approve")
    async def approve(
        request: ApproveRequest,
        caller: AccountId = Depends(get_caller),
        service: TokenService = Depends(get_token_service)
    ):
        """Set (overwrite) the spender's allowance over the caller's balance"""
        spender = parse_account(request.spender)
        value = parse_amount(request.value)
        return run_command(lambda: service.approve(caller, spender, value))

    @app.post("/token/transfer-from")
    async def transfer_from(
        request: TransferFromRequest,
        caller: AccountId = Depends(get_caller),
        service: TokenService = Depends(get_token_service)
    ):
        """Spend the caller's allowance to move value out of from_account"""
        from_account = parse_account(request.from_account)
        to = parse_account(request.to)
        value = parse_amount(request.value)
        return run_command(lambda: service.transfer_from(caller, from_account, to, value))

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)
    uvicorn.run(
        "token_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        workers=config.api_workers,
        reload=debug,
        log_level=config.log_level.lower()
    )
