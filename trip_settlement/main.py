"""
Trip Settlement Engine - FastAPI Web Backend

HTTP entry point for the expense splitting and settlement engine.

Features:
    - Create, read, edit and delete trip expenses
    - Mark individual shares as paid
    - Trip and member balances in the reference currency
    - Settlement breakdowns per expense and per trip

Access rules:
    The acting member arrives in the X-Actor-Id header, verified upstream.
    - Reading anything of a trip requires trip membership
    - A share may be marked paid by its owner or by the expense contributor
    - Only the contributor may edit or delete an expense
    - A member's cross-trip balance is visible to that member only

Endpoints:
    POST   /expenses                                   - Create an expense
    GET    /trips/{trip_id}/expenses                   - List expenses with summary
    GET    /trips/{trip_id}/balances                   - Balances and suggested transfers
    GET    /trips/{trip_id}/settlements                - Paid/pending partition
    GET    /expenses/{expense_id}                      - One expense
    PUT    /expenses/{expense_id}                      - Edit content fields
    DELETE /expenses/{expense_id}                      - Delete an expense
    PATCH  /expenses/{expense_id}/shares/{member_id}/paid - Mark share paid
    GET    /expenses/{expense_id}/settlement           - Settlement detail
    GET    /members/{member_id}/balances               - Balance over all trips

Usage:
    uvicorn trip_settlement.main:app --reload
"""

import uuid
from contextlib import asynccontextmanager
from datetime import date as date_type
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from trip_settlement import __version__
from trip_settlement.chat import create_chat_sink
from trip_settlement.config.settings import get_settings
from trip_settlement.currency import CurrencyConverter, load_rate_table
from trip_settlement.errors import BackendUnavailableError, ForbiddenError, SettlementError
from trip_settlement.expenses import ExpenseRecord
from trip_settlement.firebase_store import create_store
from trip_settlement.logging_config import LogContext, configure_logging, get_logger
from trip_settlement.members import create_directory
from trip_settlement.service import ExpenseService

logger = get_logger("api")


# =============================================================================
# Pydantic Models for Request/Response Validation
# =============================================================================

class ExpenseCreate(BaseModel):
    """Request model for creating an expense."""
    trip_id: str = Field(..., min_length=1, description="Owning trip")
    amount: Decimal = Field(..., gt=0, description="Expense amount (must be > 0)")
    currency: str = Field("USD", min_length=1, max_length=3, description="Currency code")
    description: str = Field(..., min_length=1, max_length=200)
    category: str = Field("other", description="Expense category")
    split_type: str = Field("even", description="even or manual")
    split_between: Optional[list[str]] = Field(None, description="Participants (default: all trip members)")
    manual_splits: Optional[dict[str, Decimal]] = Field(None, description="member_id -> amount for manual splits")
    date: Optional[date_type] = Field(None, description="Expense date (default: today)")
    notes: Optional[str] = Field(None, max_length=500)
    tags: list[str] = Field(default_factory=list)


class ExpenseUpdate(BaseModel):
    """Request model for editing an expense. Only set fields are changed."""
    description: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = None
    date: Optional[date_type] = None
    notes: Optional[str] = Field(None, max_length=500)
    tags: Optional[list[str]] = None


class ShareResponse(BaseModel):
    member_id: str
    amount: float
    state: str
    paid_at: Optional[str]


class ExpenseResponse(BaseModel):
    """Response model for expense data."""
    expense_id: str
    trip_id: str
    contributor_id: str
    amount: float
    currency: str
    description: str
    category: str
    split_type: str
    date: str
    shares: list[ShareResponse]
    notes: Optional[str]
    tags: list[str]
    chat_message_id: Optional[str]
    status: str
    settlement_status: str
    created_at: Optional[str]
    updated_at: Optional[str]


class ExpenseCreateResponse(ExpenseResponse):
    warnings: list[str] = []


class ExpenseListResponse(BaseModel):
    expenses: list[ExpenseResponse]
    total: int
    page: int
    limit: int
    summary: dict


class BalanceEntry(BaseModel):
    user: str
    paid: float
    owes: float
    balance: float


class TransferEntry(BaseModel):
    from_member: str
    to_member: str
    amount: float


class BalancesResponse(BaseModel):
    balances: list[BalanceEntry]
    transfers: list[TransferEntry]
    totalExpenses: int
    totalAmount: float
    currency: str


class SettlementDetailResponse(BaseModel):
    expense: ExpenseResponse
    settlements: dict


class DeleteResponse(BaseModel):
    message: str
    warnings: list[str] = []


# =============================================================================
# FastAPI Application
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(level=get_settings().log_level)
    logger.info("Trip settlement API starting", extra={"version": __version__})
    yield


app = FastAPI(
    title="Trip Settlement Engine",
    description="Expense splitting and settlement API for group trips",
    version=__version__,
    lifespan=lifespan
)


@lru_cache(maxsize=1)
def get_service() -> ExpenseService:
    """Build the process-wide service from settings (once)."""
    settings = get_settings()
    converter = CurrencyConverter(load_rate_table(settings.currency_rates_file))
    return ExpenseService(
        store=create_store(settings.expense_store),
        directory=create_directory(settings.expense_store, settings.trips_file),
        chat=create_chat_sink(settings.expense_store),
        converter=converter,
        strict_manual_splits=settings.strict_manual_splits,
        manual_split_tolerance=settings.manual_split_tolerance
    )


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> str:
    """Acting member, verified by the authentication layer upstream."""
    if not x_actor_id or not x_actor_id.strip():
        raise ForbiddenError("missing actor identity")
    return x_actor_id.strip()


# =============================================================================
# Error Handling
# =============================================================================

def _error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"kind": kind, "message": message}})


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    logger.info("Request rejected", extra={"kind": exc.kind, "detail": exc.message})
    return _error_response(exc.status_code, exc.kind, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    )
    return _error_response(422, "invalid_input", message)


@app.exception_handler(BackendUnavailableError)
async def unavailable_error_handler(request: Request, exc: BackendUnavailableError):
    logger.error("Backend unavailable", exc_info=exc)
    return _error_response(exc.status_code, exc.kind, exc.message)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return _error_response(500, "internal", "internal server error")


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    with LogContext.bind(request_id=request_id, actor_id=request.headers.get("x-actor-id")):
        response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    return response


# =============================================================================
# Access Rules
# =============================================================================

def _require_member(service: ExpenseService, trip_id: str, actor_id: str) -> list[str]:
    members = service.get_trip_members(trip_id)
    if actor_id not in members:
        raise ForbiddenError(f"member '{actor_id}' is not part of trip {trip_id}")
    return members


def _can_mark_paid(record: ExpenseRecord, member_id: str, actor_id: str) -> bool:
    return actor_id == member_id or actor_id == record.contributor_id


def _expense_to_dict(record: ExpenseRecord) -> dict:
    return record.to_dict()


# =============================================================================
# API Endpoints
# =============================================================================

@app.post("/expenses", response_model=ExpenseCreateResponse, status_code=201)
def create_expense(
    expense_data: ExpenseCreate,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    """
    Create an expense paid by the acting member.

    Request flow:
        1. Validate input using the Pydantic model
        2. Check trip membership of the contributor, split, persist
        3. Post the chat message (failure is reported as a warning)
    """
    record, warnings = service.create_expense(
        trip_id=expense_data.trip_id,
        contributor_id=actor_id,
        amount=expense_data.amount,
        description=expense_data.description,
        currency=expense_data.currency,
        category=expense_data.category,
        split_type=expense_data.split_type,
        split_between=expense_data.split_between,
        manual_splits=expense_data.manual_splits,
        date=expense_data.date.isoformat() if expense_data.date else None,
        notes=expense_data.notes,
        tags=expense_data.tags
    )
    return {**_expense_to_dict(record), "warnings": warnings}


@app.get("/trips/{trip_id}/expenses", response_model=ExpenseListResponse)
def list_trip_expenses(
    trip_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    contributor_id: Optional[str] = None,
    currency: Optional[str] = None,
    status: Optional[str] = None,
    date_from: Optional[date_type] = None,
    date_to: Optional[date_type] = None,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    """List a trip's expenses, newest first, with a summary of all matches."""
    _require_member(service, trip_id, actor_id)
    filters = {
        "category": category,
        "contributor_id": contributor_id,
        "currency": currency,
        "status": status,
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
    }
    result = service.list_trip_expenses(trip_id, page=page, limit=limit, filters=filters)
    result["expenses"] = [_expense_to_dict(r) for r in result["expenses"]]
    return result


@app.get("/trips/{trip_id}/balances", response_model=BalancesResponse)
def get_trip_balances(
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    _require_member(service, trip_id, actor_id)
    return service.get_trip_balances(trip_id)


@app.get("/trips/{trip_id}/settlements")
def get_trip_settlements(
    trip_id: str,
    member_id: Optional[str] = None,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    """Paid and pending shares of a trip, optionally for one member."""
    _require_member(service, trip_id, actor_id)
    return service.get_trip_settlements(trip_id, member_id=member_id)


@app.get("/members/{member_id}/balances")
def get_member_balances(
    member_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    if member_id != actor_id:
        raise ForbiddenError("members can only view their own balances")
    return service.get_member_balances(member_id)


@app.get("/expenses/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    record = service.get_expense(expense_id)
    _require_member(service, record.trip_id, actor_id)
    return _expense_to_dict(record)


@app.put("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: str,
    update_data: ExpenseUpdate,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    """Edit description, category, date, notes or tags (contributor only)."""
    changes = update_data.model_dump(exclude_unset=True)
    if "date" in changes and changes["date"] is not None:
        changes["date"] = changes["date"].isoformat()
    record = service.update_expense(expense_id, actor_id, changes)
    return _expense_to_dict(record)


@app.delete("/expenses/{expense_id}", response_model=DeleteResponse)
def delete_expense(
    expense_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    warnings = service.delete_expense(expense_id, actor_id)
    return DeleteResponse(message="Expense deleted", warnings=warnings)


@app.patch("/expenses/{expense_id}/shares/{member_id}/paid", response_model=ExpenseResponse)
def mark_share_paid(
    expense_id: str,
    member_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    """
    Mark one share as paid.

    Allowed for the member owning the share and for the expense contributor.
    A share that is already paid is answered with 409.
    """
    record = service.get_expense(expense_id)
    _require_member(service, record.trip_id, actor_id)
    if not _can_mark_paid(record, member_id, actor_id):
        raise ForbiddenError("only the share owner or the contributor can mark a share paid")

    return _expense_to_dict(service.mark_share_paid(expense_id, member_id))


@app.get("/expenses/{expense_id}/settlement", response_model=SettlementDetailResponse)
def get_settlement_detail(
    expense_id: str,
    actor_id: str = Depends(get_actor_id),
    service: ExpenseService = Depends(get_service)
):
    detail = service.get_settlement_detail(expense_id)
    _require_member(service, detail["expense"].trip_id, actor_id)
    detail["expense"] = _expense_to_dict(detail["expense"])
    return detail


# =============================================================================
# Health Check Endpoint
# =============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint to verify API is running."""
    return {"status": "healthy", "service": "Trip Settlement Engine"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("trip_settlement.main:app", host="127.0.0.1", port=8000, reload=True)
