"""
Pydantic schemas for API requests and responses
"""

from dataclasses import asdict
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from .balance import BalanceSnapshot
from .errors import ValidationError
from .models import LateFeeCalculationType, LateFeeConfig
from .money import decimal_from_string
from .storage import serialize_value


def parse_amount(value: str, name: str = "amount") -> Decimal:
    """Decimal from a request string; bad input is a ValidationError"""
    try:
        return decimal_from_string(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r}")


class LateFeeConfigModel(BaseModel):
    enabled: bool = False
    rate: str = Field("0", description="Percentage per accrual unit")
    grace_period_days: int = 0
    max_late_fee: str = Field("0", description="Cap, 0 for none")
    calculation_type: str = Field("daily", description="daily, monthly or compound")

    def to_config(self) -> LateFeeConfig:
        return LateFeeConfig(
            enabled=self.enabled,
            rate=parse_amount(self.rate, "late fee rate"),
            grace_period_days=self.grace_period_days,
            max_late_fee=parse_amount(self.max_late_fee, "max late fee"),
            calculation_type=LateFeeCalculationType(self.calculation_type)
        )


class CreateLoanRequest(BaseModel):
    amount: str = Field(..., description="Principal as decimal string")
    interest_rate: str = Field(..., description="Percentage per payment period")
    term: int = 0
    amortization_type: str = Field(..., description="simple, french or indefinite")
    payment_frequency: str = Field(..., description="daily, weekly, biweekly or monthly")
    start_date: str  # ISO date string
    first_due_date: Optional[str] = None
    client_id: Optional[str] = None
    late_fee: Optional[LateFeeConfigModel] = None


class PaymentRequest(BaseModel):
    amount: str = "0"
    late_fee_amount: str = "0"
    payment_date: Optional[str] = None
    payment_method: str = "cash"
    reference: Optional[str] = None
    notes: Optional[str] = None


class ChargeRequest(BaseModel):
    amount: str
    due_date: str
    description: Optional[str] = None


class LateFeeRemovalRequest(BaseModel):
    amount: str
    reason: str
    as_of: Optional[str] = None


class PrepaymentRequest(BaseModel):
    amount: str
    keep_installment_count: bool = True
    penalty_percentage: str = "0"
    as_of: Optional[str] = None
    notes: Optional[str] = None


class CapitalPaymentRequest(PrepaymentRequest):
    # Keys the duplicate check of retried requests
    capital_before: str = Field(..., description="Pending principal shown in the preview")


class SettlementRequest(BaseModel):
    capital: str
    interest: str = "0"
    late_fee: str = "0"
    as_of: Optional[str] = None
    payment_method: str = "cash"
    reference: Optional[str] = None
    notes: Optional[str] = None


def dataclass_response(value: Any) -> Dict[str, Any]:
    """JSON-ready dict of a result dataclass"""
    return serialize_value(asdict(value))


def balance_response(snapshot: BalanceSnapshot) -> Dict[str, Any]:
    return serialize_value({
        'principal_pending': snapshot.principal_pending,
        'interest_pending': snapshot.interest_pending,
        'charges_pending': snapshot.charges_pending,
        'total_balance': snapshot.total_balance,
        'open_installments': snapshot.open_installments,
        'open_charges': snapshot.open_charges,
        'next_payment_date': snapshot.next_payment_date
    })
