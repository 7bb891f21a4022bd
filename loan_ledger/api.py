"""
FastAPI REST API Module

Thin transport adapter over LoanLedgerService. Ledger errors map to HTTP
status codes: validation 422, precondition 409, missing loan 404, busy loan
423, reconciliation 500.
"""

from typing import Optional
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
import uvicorn

from .audit import AuditTrail
from .config import LedgerConfig, get_config
from .errors import (
    LockTimeoutError, LoanLedgerError, LoanNotFoundError, PreconditionError,
    ReconciliationError, ValidationError
)
from .logging_config import get_logger, setup_logging
from .models import AmortizationType, PaymentFrequency
from .persistence import StorageLedgerPersistence
from .schemas import (
    CapitalPaymentRequest, ChargeRequest, CreateLoanRequest, LateFeeRemovalRequest,
    PaymentRequest, PrepaymentRequest, SettlementRequest, balance_response, dataclass_response,
    parse_amount
)
from .service import LoanLedgerService
from .storage import InMemoryStorage, SQLiteStorage

logger = get_logger("loan_ledger.api")

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PreconditionError: status.HTTP_409_CONFLICT,
    LoanNotFoundError: status.HTTP_404_NOT_FOUND,
    LockTimeoutError: status.HTTP_423_LOCKED,
    ReconciliationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_service(config: Optional[LedgerConfig] = None) -> LoanLedgerService:
    """Build a service on the storage backend the configuration selects"""
    config = config or get_config()
    if config.use_sqlite:
        storage = SQLiteStorage(config.database_url)
    else:
        storage = InMemoryStorage()
    return LoanLedgerService(
        StorageLedgerPersistence(storage),
        audit_trail=AuditTrail(storage),
        config=config
    )


_service: Optional[LoanLedgerService] = None


def get_service() -> LoanLedgerService:
    """FastAPI dependency returning the process-wide service"""
    global _service
    if _service is None:
        _service = create_service()
    return _service


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(request: CreateLoanRequest, service: LoanLedgerService = Depends(get_service)):
    """Create a loan and its schedule"""
    loan = service.create_loan(
        amount=parse_amount(request.amount),
        interest_rate=parse_amount(request.interest_rate, "interest rate"),
        term=request.term,
        amortization_type=AmortizationType(request.amortization_type),
        payment_frequency=PaymentFrequency(request.payment_frequency),
        start_date=request.start_date,
        late_fee=request.late_fee.to_config() if request.late_fee else None,
        client_id=request.client_id,
        first_due_date=request.first_due_date
    )
    return {"loan": loan.to_dict(), "message": "Loan created successfully"}


@router.get("/{loan_id}")
async def get_loan(loan_id: str, service: LoanLedgerService = Depends(get_service)):
    """Get loan details"""
    return service.get_loan(loan_id).to_dict()


@router.get("/{loan_id}/installments")
async def list_installments(loan_id: str, service: LoanLedgerService = Depends(get_service)):
    """Installments and charges ordered by due date"""
    return {"installments": [row.to_dict() for row in service.list_installments(loan_id)]}


@router.get("/{loan_id}/balance")
async def get_balance(loan_id: str, service: LoanLedgerService = Depends(get_service)):
    """Balance re-derived from the installment and payment history"""
    return balance_response(service.get_balance(loan_id))


@router.post("/{loan_id}/charges", status_code=status.HTTP_201_CREATED)
async def add_charge(loan_id: str, request: ChargeRequest,
                     service: LoanLedgerService = Depends(get_service)):
    """Add an ad-hoc charge"""
    charge = service.add_charge(loan_id, parse_amount(request.amount), request.due_date,
                                description=request.description)
    return charge.to_dict()


@router.post("/{loan_id}/schedule/extend")
async def extend_schedule(loan_id: str, as_of: Optional[str] = None,
                          service: LoanLedgerService = Depends(get_service)):
    """Add accrued interest-only rows to an indefinite loan"""
    rows = service.extend_schedule(loan_id, as_of)
    return {"installments": [row.to_dict() for row in rows]}


@router.get("/{loan_id}/allocation")
async def preview_allocation(loan_id: str, amount: str,
                             service: LoanLedgerService = Depends(get_service)):
    """How a payment would be split"""
    return dataclass_response(service.preview_allocation(loan_id, parse_amount(amount)))


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
async def apply_payment(loan_id: str, request: PaymentRequest,
                        service: LoanLedgerService = Depends(get_service)):
    """Record a payment"""
    outcome = service.apply_payment(
        loan_id,
        parse_amount(request.amount),
        late_fee_amount=parse_amount(request.late_fee_amount, "late fee amount"),
        payment_date=request.payment_date,
        payment_method=request.payment_method,
        reference=request.reference,
        notes=request.notes
    )
    return {
        "payment": outcome.payment.to_dict(),
        "installment_paid": outcome.installment_paid,
        "new_balance": str(outcome.new_balance)
    }


@router.get("/{loan_id}/late-fees")
async def get_late_fees(loan_id: str, as_of: Optional[str] = None,
                        service: LoanLedgerService = Depends(get_service)):
    """Per-installment late fee breakdown"""
    return dataclass_response(service.compute_late_fee_breakdown(loan_id, as_of))


@router.post("/{loan_id}/late-fees/removal")
async def remove_late_fee(loan_id: str, request: LateFeeRemovalRequest,
                          service: LoanLedgerService = Depends(get_service)):
    """Waive part of the current late fee"""
    outcome = service.remove_late_fee(loan_id, parse_amount(request.amount), request.reason,
                                      as_of=request.as_of)
    return dataclass_response(outcome)


@router.post("/{loan_id}/prepayment/preview")
async def preview_prepayment(loan_id: str, request: PrepaymentRequest,
                             service: LoanLedgerService = Depends(get_service)):
    """Schedule changes a capital payment would cause"""
    plan = service.preview_prepayment(
        loan_id,
        parse_amount(request.amount),
        request.keep_installment_count,
        penalty_percentage=parse_amount(request.penalty_percentage, "penalty percentage"),
        as_of=request.as_of
    )
    return dataclass_response(plan)


@router.post("/{loan_id}/prepayment", status_code=status.HTTP_201_CREATED)
async def apply_prepayment(loan_id: str, request: CapitalPaymentRequest,
                           service: LoanLedgerService = Depends(get_service)):
    """Record a capital payment and restructure the schedule"""
    outcome = service.apply_prepayment(
        loan_id,
        parse_amount(request.amount),
        request.keep_installment_count,
        penalty_percentage=parse_amount(request.penalty_percentage, "penalty percentage"),
        as_of=request.as_of,
        capital_before=parse_amount(request.capital_before, "capital before"),
        notes=request.notes
    )
    return {
        "capital_payment": outcome.capital_payment.to_dict(),
        "duplicate": outcome.duplicate,
        "new_balance": str(outcome.new_balance)
    }


@router.get("/{loan_id}/settlement")
async def get_settlement(loan_id: str, as_of: Optional[str] = None,
                         service: LoanLedgerService = Depends(get_service)):
    """What it takes to close the loan"""
    return dataclass_response(service.compute_settlement(loan_id, as_of))


@router.post("/{loan_id}/settlement")
async def settle_loan(loan_id: str, request: SettlementRequest,
                      service: LoanLedgerService = Depends(get_service)):
    """Close the loan early"""
    outcome = service.settle_loan(
        loan_id,
        parse_amount(request.capital, "capital"),
        interest=parse_amount(request.interest, "interest"),
        late_fee=parse_amount(request.late_fee, "late fee"),
        as_of=request.as_of,
        payment_method=request.payment_method,
        reference=request.reference,
        notes=request.notes
    )
    return {
        "payment": outcome.payment.to_dict(),
        "breakdown": dataclass_response(outcome.breakdown),
        "settled_installments": outcome.settled_installments,
        "message": "Loan settled successfully"
    }


@router.get("/{loan_id}/audit")
async def get_audit_events(loan_id: str, limit: Optional[int] = None,
                           service: LoanLedgerService = Depends(get_service)):
    """Audit events recorded for a loan"""
    if service.audit_trail is None:
        return {"events": []}
    events = service.audit_trail.get_events_for_entity("loan", loan_id, limit=limit)
    return {"events": [event.to_dict() for event in events]}


async def ledger_error_handler(request: Request, exc: LoanLedgerError) -> JSONResponse:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("Ledger failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status_code,
                        content={"detail": str(exc), "error": type(exc).__name__})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                        content={"detail": str(exc), "error": "ValidationError"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Ledger API",
        description="Payment allocation, late fees, prepayment and settlement for installment loans",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.add_exception_handler(LoanLedgerError, ledger_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.include_router(router, prefix="/loans", tags=["Loans"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_ledger_api",
            "version": "1.0.0"
        }

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Start the API server with structured logging"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port)
