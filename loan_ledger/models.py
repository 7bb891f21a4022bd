"""
Ledger Data Model

Loans, scheduled installments (regular installments and ad-hoc charges),
payments and capital payments. Every monetary field is a Decimal rounded to
cents and every due or payment date is a calendar date.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from .dates import optional_date, parse_date
from .money import ZERO, approx_zero, round2, to_decimal
from .storage import StorageRecord


class AmortizationType(Enum):
    """How the principal is spread over the schedule"""
    SIMPLE = "simple"            # Flat interest on the original principal
    FRENCH = "french"            # Equal payments, interest on declining balance
    INDEFINITE = "indefinite"    # Interest-only rows, principal via capital payments


class PaymentFrequency(Enum):
    """Payment frequency options"""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class LateFeeCalculationType(Enum):
    """Late fee accrual methods"""
    DAILY = "daily"          # basis x rate x days
    MONTHLY = "monthly"      # basis x rate x started 30-day months
    COMPOUND = "compound"    # basis x ((1 + rate)^days - 1)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    OVERDUE = "overdue"
    PAID = "paid"
    DELETED = "deleted"


class PaymentKind(Enum):
    """What a payment record settles"""
    REGULAR = "regular"          # Attributed to one due date
    SETTLEMENT = "settlement"    # Early payoff of the whole loan


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class LateFeeConfig:
    """Late fee settings of a loan"""
    enabled: bool = False
    rate: Decimal = ZERO                  # Percentage per accrual unit
    grace_period_days: int = 0
    max_late_fee: Decimal = ZERO          # 0 means uncapped
    calculation_type: LateFeeCalculationType = LateFeeCalculationType.DAILY

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'LateFeeConfig':
        if not data:
            return cls()
        return cls(
            enabled=bool(data.get('enabled', False)),
            rate=to_decimal(data.get('rate')),
            grace_period_days=int(data.get('grace_period_days') or 0),
            max_late_fee=to_decimal(data.get('max_late_fee')),
            calculation_type=LateFeeCalculationType(data.get('calculation_type', 'daily'))
        )


@dataclass
class Loan(StorageRecord):
    """
    Loan terms plus display caches

    `amount` is the current principal. For indefinite loans it is mutated
    directly by capital payments; for scheduled loans it stays at the
    original principal and the outstanding principal lives in the schedule.
    `remaining_balance`, `current_late_fee` and `next_payment_date` are caches
    refreshed after every mutation, never read back as ground truth.
    """
    amount: Decimal
    interest_rate: Decimal                # Percentage per payment period
    term: int
    amortization_type: AmortizationType
    payment_frequency: PaymentFrequency
    start_date: date
    late_fee: LateFeeConfig = field(default_factory=LateFeeConfig)
    status: LoanStatus = LoanStatus.ACTIVE
    original_amount: Decimal = ZERO
    client_id: Optional[str] = None
    remaining_balance: Decimal = ZERO
    current_late_fee: Decimal = ZERO
    next_payment_date: Optional[date] = None

    def __post_init__(self):
        self.amount = round2(self.amount)
        self.interest_rate = to_decimal(self.interest_rate)
        if not self.original_amount:
            self.original_amount = self.amount

    @property
    def is_indefinite(self) -> bool:
        return self.amortization_type == AmortizationType.INDEFINITE

    @property
    def is_closed(self) -> bool:
        """Closed loans accept no further mutations"""
        return self.status in (LoanStatus.PAID, LoanStatus.DELETED)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        for key in ('amount', 'interest_rate', 'original_amount', 'remaining_balance', 'current_late_fee'):
            data[key] = to_decimal(data.get(key))
        data['amortization_type'] = AmortizationType(data['amortization_type'])
        data['payment_frequency'] = PaymentFrequency(data['payment_frequency'])
        data['status'] = LoanStatus(data.get('status', 'active'))
        data['start_date'] = parse_date(data['start_date'])
        data['next_payment_date'] = optional_date(data.get('next_payment_date'))
        data['late_fee'] = LateFeeConfig.from_dict(data.get('late_fee'))
        return super().from_dict(data)


@dataclass
class Installment(StorageRecord):
    """
    One scheduled due item

    Charges are ad-hoc fees stored in the same shape with no interest. They
    carry an explicit flag so that a zero-rate regular installment is never
    mistaken for one.
    """
    loan_id: str
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal = ZERO
    is_charge: bool = False
    is_paid: bool = False
    is_settled: bool = False
    late_fee_paid: Decimal = ZERO
    paid_date: Optional[date] = None
    description: Optional[str] = None

    def __post_init__(self):
        self.principal_amount = round2(self.principal_amount)
        self.interest_amount = round2(self.interest_amount)
        self.total_amount = round2(self.principal_amount + self.interest_amount)
        self.late_fee_paid = round2(self.late_fee_paid)

    @property
    def is_open(self) -> bool:
        """Neither paid nor closed by a settlement"""
        return not (self.is_paid or self.is_settled)

    @property
    def late_fee_basis(self) -> Decimal:
        """Amount late fees accrue on: the principal, or the total for interest-only rows"""
        if approx_zero(self.principal_amount):
            return self.total_amount
        return self.principal_amount

    def set_amounts(self, principal: Decimal, interest: Decimal) -> None:
        self.principal_amount = round2(principal)
        self.interest_amount = round2(interest)
        self.total_amount = round2(self.principal_amount + self.interest_amount)
        self.updated_at = _now()

    @classmethod
    def create(cls, loan_id: str, installment_number: int, due_date: date,
               principal: Decimal, interest: Decimal, is_charge: bool = False,
               description: Optional[str] = None) -> 'Installment':
        now = _now()
        return cls(
            id=new_id(),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            installment_number=installment_number,
            due_date=due_date,
            principal_amount=principal,
            interest_amount=interest,
            is_charge=is_charge,
            description=description
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        data = dict(data)
        for key in ('principal_amount', 'interest_amount', 'total_amount', 'late_fee_paid'):
            data[key] = to_decimal(data.get(key))
        data['due_date'] = parse_date(data['due_date'])
        data['paid_date'] = optional_date(data.get('paid_date'))
        return super().from_dict(data)


@dataclass
class Payment(StorageRecord):
    """
    A received payment

    `due_date` is the due date the payment was attributed to and
    `charge_payment` says whether it went to the charges or to the regular
    installment due that day. Settlement payments have no due date.
    """
    loan_id: str
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    late_fee: Decimal
    payment_date: date
    due_date: Optional[date] = None
    charge_payment: bool = False
    kind: PaymentKind = PaymentKind.REGULAR
    payment_method: str = "cash"
    reference: Optional[str] = None
    notes: Optional[str] = None

    @property
    def applied_amount(self) -> Decimal:
        """Principal plus interest, the part replayed against the schedule"""
        return round2(self.principal_amount + self.interest_amount)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        data = dict(data)
        for key in ('amount', 'principal_amount', 'interest_amount', 'late_fee'):
            data[key] = to_decimal(data.get(key))
        data['payment_date'] = parse_date(data['payment_date'])
        data['due_date'] = optional_date(data.get('due_date'))
        data['kind'] = PaymentKind(data.get('kind', 'regular'))
        return super().from_dict(data)


@dataclass
class CapitalPayment(StorageRecord):
    """Out-of-schedule principal payment"""
    loan_id: str
    amount: Decimal
    capital_before: Decimal
    capital_after: Decimal
    keep_installment_count: bool
    payment_date: date
    idempotency_key: str
    penalty_percentage: Decimal = ZERO
    penalty_amount: Decimal = ZERO
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CapitalPayment':
        data = dict(data)
        for key in ('amount', 'capital_before', 'capital_after', 'penalty_percentage', 'penalty_amount'):
            data[key] = to_decimal(data.get(key))
        data['payment_date'] = parse_date(data['payment_date'])
        return super().from_dict(data)
