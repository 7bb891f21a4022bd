"""
Loan Ledger Service

Caller-facing ledger operations. Every operation runs the same explicit
pipeline under the loan's lock:

    load state -> reconstruct balance -> compute late fees
        -> (mutate and persist atomically) -> reconstruct balance again

The re-derived balance, late fee, next payment date and status are written
back to the loan as display caches at the end of every mutation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional
import uuid

from .allocation import AllocationResult, allocate_payment, validate_payment_request
from .audit import AuditEventType, AuditTrail
from .balance import BalanceSnapshot, reconstruct_balance
from .config import LedgerConfig, get_config
from .dates import DateLike, parse_date, today
from .errors import LoanNotFoundError, PreconditionError, ValidationError
from .late_fees import (
    LateFeeBreakdown, compute_late_fee_breakdown, distribute_late_fee_payment,
    distribute_late_fee_removal
)
from .locking import LoanLockManager
from .logging_config import get_logger, log_action
from .models import (
    AmortizationType, CapitalPayment, Installment, LateFeeConfig, Loan, LoanStatus,
    Payment, PaymentFrequency, PaymentKind
)
from .money import TOLERANCE, ZERO, round2, to_decimal
from .persistence import LedgerPersistence
from .prepayment import PrepaymentPlan, capital_payment_key, plan_prepayment
from .schedule import build_charge, extend_indefinite_schedule, generate_schedule
from .settlement import SettlementAmounts, SettlementBreakdown, compute_settlement, validate_settlement

logger = get_logger("loan_ledger.service")


@dataclass
class LedgerState:
    """Everything stored for one loan"""
    loan: Loan
    installments: List[Installment]
    payments: List[Payment]
    capital_payments: List[CapitalPayment]


@dataclass
class PaymentOutcome:
    payment: Payment
    allocation: Optional[AllocationResult]
    late_fee_applied: Dict[str, Decimal]
    installment_paid: bool
    new_balance: Decimal
    snapshot: BalanceSnapshot = field(repr=False)


@dataclass
class LateFeeRemovalOutcome:
    removed: Decimal
    shares: Dict[str, Decimal]
    new_late_fee: Decimal


@dataclass
class PrepaymentOutcome:
    capital_payment: CapitalPayment
    duplicate: bool
    new_balance: Decimal
    plan: Optional[PrepaymentPlan] = None


@dataclass
class SettlementOutcome:
    payment: Payment
    breakdown: SettlementBreakdown
    amounts: SettlementAmounts
    settled_installments: int


class LoanLedgerService:
    """
    Ledger operations over a persistence collaborator

    Storage errors are never caught here; a failure inside an atomic block
    rolls the whole mutation back and propagates unchanged.
    """

    def __init__(
        self,
        persistence: LedgerPersistence,
        audit_trail: Optional[AuditTrail] = None,
        locks: Optional[LoanLockManager] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.persistence = persistence
        self.config = config or get_config()
        self.audit_trail = audit_trail if self.config.enable_audit_logging else None
        self.locks = locks or LoanLockManager(self.config.lock_timeout_seconds)

    # ------------------------------------------------------------------
    # Pipeline helpers

    def _as_of(self, value: Optional[DateLike]) -> date:
        if value is None:
            return today(self.config.business_timezone)
        return parse_date(value)

    def load_state(self, loan_id: str) -> LedgerState:
        loan = self.persistence.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return LedgerState(
            loan=loan,
            installments=self.persistence.list_installments(loan_id),
            payments=self.persistence.list_payments(loan_id),
            capital_payments=self.persistence.list_capital_payments(loan_id)
        )

    def _require_open(self, loan: Loan) -> None:
        if loan.is_closed:
            raise PreconditionError(f"Loan {loan.id} is {loan.status.value} and cannot be modified")

    def _audit(self, event_type: AuditEventType, loan_id: str, metadata: Dict,
               user_id: Optional[str] = None) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(event_type, "loan", loan_id, metadata=metadata, user_id=user_id)

    def _refresh(self, loan_id: str, as_of: date) -> BalanceSnapshot:
        """Re-derive the balance and store the loan's display caches and status"""
        state = self.load_state(loan_id)
        loan = state.loan
        snapshot = reconstruct_balance(loan, state.installments, state.payments)
        late_fees = compute_late_fee_breakdown(loan, state.installments, as_of)

        status = loan.status
        if status != LoanStatus.DELETED:
            if snapshot.is_settled:
                status = LoanStatus.PAID
            elif snapshot.current_due and snapshot.current_due.due_date < as_of:
                status = LoanStatus.OVERDUE
            else:
                status = LoanStatus.ACTIVE

        self.persistence.update_loan(loan_id, {
            'remaining_balance': snapshot.total_balance,
            'current_late_fee': late_fees.total_late_fee,
            'next_payment_date': snapshot.next_payment_date,
            'status': status,
            'updated_at': datetime.now(timezone.utc)
        })
        if status != loan.status:
            self._audit(AuditEventType.LOAN_STATUS_CHANGED, loan_id, {
                'from': loan.status, 'to': status, 'as_of': as_of
            })
        return snapshot

    # ------------------------------------------------------------------
    # Loans and schedule

    def create_loan(
        self,
        amount,
        interest_rate,
        term: int,
        amortization_type: AmortizationType,
        payment_frequency: PaymentFrequency,
        start_date: DateLike,
        late_fee: Optional[LateFeeConfig] = None,
        client_id: Optional[str] = None,
        first_due_date: Optional[DateLike] = None,
        as_of: Optional[DateLike] = None
    ) -> Loan:
        """
        Create a loan and its installment schedule

        Raises:
            ValidationError: non-positive amount, negative rates, term below 1
        """
        amount = round2(amount)
        interest_rate = to_decimal(interest_rate)
        late_fee = late_fee or LateFeeConfig()
        amortization_type = AmortizationType(amortization_type)
        payment_frequency = PaymentFrequency(payment_frequency)

        if amount <= 0:
            raise ValidationError("Loan amount must be positive")
        if interest_rate < 0:
            raise ValidationError("Interest rate cannot be negative")
        if amortization_type != AmortizationType.INDEFINITE and term < 1:
            raise ValidationError("Term must be at least one period")
        if late_fee.rate < 0 or late_fee.max_late_fee < 0 or late_fee.grace_period_days < 0:
            raise ValidationError("Late fee settings cannot be negative")

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            amount=amount,
            interest_rate=interest_rate,
            term=term if amortization_type != AmortizationType.INDEFINITE else 0,
            amortization_type=amortization_type,
            payment_frequency=payment_frequency,
            start_date=parse_date(start_date),
            late_fee=late_fee,
            client_id=client_id
        )
        rows = generate_schedule(loan, parse_date(first_due_date) if first_due_date else None)
        as_of = self._as_of(as_of)

        with self.locks.hold(loan.id), self.persistence.atomic():
            self.persistence.save_loan(loan)
            self.persistence.upsert_installments(rows)
            self._audit(AuditEventType.LOAN_CREATED, loan.id, {
                'amount': loan.amount,
                'interest_rate': loan.interest_rate,
                'term': loan.term,
                'amortization_type': loan.amortization_type,
                'payment_frequency': loan.payment_frequency
            })
            self._audit(AuditEventType.INSTALLMENTS_GENERATED, loan.id, {'count': len(rows)})
            self._refresh(loan.id, as_of)

        log_action(logger, "info", "Loan created", loan_id=loan.id, action="loan_created",
                   extra={'amount': str(loan.amount), 'installments': len(rows)})
        return self.persistence.get_loan(loan.id)

    def get_loan(self, loan_id: str) -> Loan:
        return self.load_state(loan_id).loan

    def list_installments(self, loan_id: str) -> List[Installment]:
        return self.load_state(loan_id).installments

    def extend_schedule(self, loan_id: str, as_of: Optional[DateLike] = None) -> List[Installment]:
        """Add the interest-only rows an indefinite loan has accrued up to as_of"""
        as_of = self._as_of(as_of)
        with self.locks.hold(loan_id):
            state = self.load_state(loan_id)
            new_rows = extend_indefinite_schedule(state.loan, state.installments, as_of)
            if not new_rows:
                return []
            with self.persistence.atomic():
                self.persistence.upsert_installments(new_rows)
                self._audit(AuditEventType.SCHEDULE_EXTENDED, loan_id, {
                    'count': len(new_rows),
                    'through': new_rows[-1].due_date
                })
                self._refresh(loan_id, as_of)

        log_action(logger, "info", "Schedule extended", loan_id=loan_id, action="schedule_extended",
                   extra={'rows': len(new_rows)})
        return new_rows

    def add_charge(self, loan_id: str, amount, due_date: DateLike, description: Optional[str] = None,
                   as_of: Optional[DateLike] = None) -> Installment:
        """Add an ad-hoc charge to a loan"""
        as_of = self._as_of(as_of)
        with self.locks.hold(loan_id):
            state = self.load_state(loan_id)
            self._require_open(state.loan)
            charge = build_charge(state.loan, state.installments, amount, parse_date(due_date), description)
            with self.persistence.atomic():
                self.persistence.upsert_installments([charge])
                self._audit(AuditEventType.CHARGE_ADDED, loan_id, {
                    'installment_id': charge.id,
                    'amount': charge.total_amount,
                    'due_date': charge.due_date,
                    'description': description
                })
                self._refresh(loan_id, as_of)

        log_action(logger, "info", "Charge added", loan_id=loan_id, action="charge_added",
                   extra={'amount': str(charge.total_amount)})
        return charge

    # ------------------------------------------------------------------
    # Balance and late fees

    def get_balance(self, loan_id: str) -> BalanceSnapshot:
        state = self.load_state(loan_id)
        return reconstruct_balance(state.loan, state.installments, state.payments)

    def compute_late_fee_breakdown(self, loan_id: str, as_of: Optional[DateLike] = None) -> LateFeeBreakdown:
        state = self.load_state(loan_id)
        return compute_late_fee_breakdown(state.loan, state.installments, self._as_of(as_of))

    def remove_late_fee(self, loan_id: str, amount, reason: str, as_of: Optional[DateLike] = None,
                        user_id: Optional[str] = None) -> LateFeeRemovalOutcome:
        """
        Waive part of the current late fee

        The waiver is spread over the installments in proportion to their
        recomputed outstanding fee. When no installment carries a fee, only
        the loan-level late fee counter is decremented.

        Raises:
            ValidationError: missing reason, non-positive amount, or more than
                the current late fee
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to remove late fees")
        amount = round2(amount)
        as_of = self._as_of(as_of)

        with self.locks.hold(loan_id):
            state = self.load_state(loan_id)
            self._require_open(state.loan)
            breakdown = compute_late_fee_breakdown(state.loan, state.installments, as_of)
            shares = distribute_late_fee_removal(amount, breakdown)

            with self.persistence.atomic():
                if shares:
                    by_id = {row.id: row for row in state.installments}
                    changed = []
                    for installment_id, share in shares.items():
                        row = by_id[installment_id]
                        row.late_fee_paid = round2(row.late_fee_paid + share)
                        changed.append(row)
                    self.persistence.upsert_installments(changed)
                    new_late_fee = compute_late_fee_breakdown(state.loan, state.installments, as_of).total_late_fee
                else:
                    counter = state.loan.current_late_fee
                    if amount > counter + TOLERANCE:
                        raise ValidationError(f"Cannot remove {amount}: current late fee is {counter}")
                    new_late_fee = max(ZERO, round2(counter - amount))
                    self.persistence.update_loan(loan_id, {'current_late_fee': new_late_fee})

                self._audit(AuditEventType.LATE_FEE_REMOVED, loan_id, {
                    'amount': amount,
                    'reason': reason.strip(),
                    'shares': shares,
                    'as_of': as_of
                }, user_id=user_id)
                if shares:
                    self._refresh(loan_id, as_of)

        log_action(logger, "info", "Late fee removed", loan_id=loan_id, action="late_fee_removed",
                   extra={'amount': str(amount), 'reason': reason.strip()})
        return LateFeeRemovalOutcome(removed=amount, shares=shares, new_late_fee=new_late_fee)

    # ------------------------------------------------------------------
    # Payments

    def preview_allocation(self, loan_id: str, amount) -> AllocationResult:
        """How a payment would be split, without recording it"""
        state = self.load_state(loan_id)
        snapshot = reconstruct_balance(state.loan, state.installments, state.payments)
        if snapshot.current_due is None:
            raise ValidationError(f"Loan {loan_id} has nothing due")
        current = snapshot.current_due
        return allocate_payment(amount, current, snapshot.progress[current.id], allow_excess=True)

    def apply_payment(
        self,
        loan_id: str,
        amount,
        late_fee_amount=ZERO,
        payment_date: Optional[DateLike] = None,
        payment_method: str = "cash",
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> PaymentOutcome:
        """
        Record a payment against the current due item

        `amount` goes to the interest and principal of the current due item
        (installment or charge); `late_fee_amount` goes to the accrued late
        fees of the oldest overdue installments.

        Raises:
            ValidationError: negative amounts, nothing to pay, amount above the
                current item's outstanding balance, late fee above the current
                late fee
            PreconditionError: the loan is paid or deleted
        """
        amount, late_fee_amount = validate_payment_request(amount, late_fee_amount)
        payment_date = self._as_of(payment_date)

        with self.locks.hold(loan_id):
            state = self.load_state(loan_id)
            self._require_open(state.loan)
            snapshot = reconstruct_balance(state.loan, state.installments, state.payments)
            by_id = {row.id: row for row in state.installments}
            changed: Dict[str, Installment] = {}

            # Fees accrue on open rows only, so price them before this payment closes one
            breakdown = None
            if late_fee_amount > 0:
                breakdown = compute_late_fee_breakdown(state.loan, state.installments, payment_date)

            allocation = None
            if amount > 0:
                current = snapshot.current_due
                if current is None:
                    raise ValidationError(f"Loan {loan_id} has nothing due")
                allocation = allocate_payment(amount, current, snapshot.progress[current.id])
                if allocation.completes_installment:
                    row = by_id[current.id]
                    row.is_paid = True
                    row.paid_date = payment_date
                    changed[row.id] = row

            late_fee_applied: Dict[str, Decimal] = {}
            if breakdown is not None:
                late_fee_applied = distribute_late_fee_payment(late_fee_amount, breakdown)
                for installment_id, share in late_fee_applied.items():
                    row = by_id[installment_id]
                    row.late_fee_paid = round2(row.late_fee_paid + share)
                    changed[row.id] = row

            if allocation:
                due_date, charge_payment = allocation.due_date, allocation.is_charge
            else:
                first = by_id[next(iter(late_fee_applied))]
                due_date, charge_payment = first.due_date, first.is_charge

            now = datetime.now(timezone.utc)
            interest = allocation.interest_applied if allocation else ZERO
            principal = allocation.principal_applied if allocation else ZERO
            late_fee_total = round2(sum(late_fee_applied.values(), ZERO))
            payment = Payment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                amount=round2(interest + principal + late_fee_total),
                principal_amount=principal,
                interest_amount=interest,
                late_fee=late_fee_total,
                payment_date=payment_date,
                due_date=due_date,
                charge_payment=charge_payment,
                payment_method=payment_method,
                reference=reference,
                notes=notes
            )

            with self.persistence.atomic():
                self.persistence.insert_payment(payment)
                if changed:
                    self.persistence.upsert_installments(changed.values())
                self._audit(AuditEventType.PAYMENT_APPLIED, loan_id, {
                    'payment_id': payment.id,
                    'amount': payment.amount,
                    'interest_amount': interest,
                    'principal_amount': principal,
                    'late_fee': late_fee_total,
                    'due_date': due_date,
                    'charge_payment': charge_payment
                }, user_id=user_id)
                new_snapshot = self._refresh(loan_id, payment_date)

        installment_paid = bool(allocation and allocation.completes_installment)
        log_action(logger, "info", "Payment applied", loan_id=loan_id, action="payment_applied",
                   extra={'payment_id': payment.id, 'amount': str(payment.amount),
                          'installment_paid': installment_paid,
                          'new_balance': str(new_snapshot.total_balance)})
        return PaymentOutcome(
            payment=payment,
            allocation=allocation,
            late_fee_applied=late_fee_applied,
            installment_paid=installment_paid,
            new_balance=new_snapshot.total_balance,
            snapshot=new_snapshot
        )

    # ------------------------------------------------------------------
    # Capital payments

    def preview_prepayment(self, loan_id: str, amount, keep_installment_count: bool,
                           penalty_percentage=ZERO, as_of: Optional[DateLike] = None) -> PrepaymentPlan:
        """Restructuring a capital payment would cause, without persisting it"""
        state = self.load_state(loan_id)
        self._require_open(state.loan)
        snapshot = reconstruct_balance(state.loan, state.installments, state.payments)
        return plan_prepayment(state.loan, state.installments, snapshot, amount,
                               keep_installment_count, self._as_of(as_of), penalty_percentage)

    def apply_prepayment(
        self,
        loan_id: str,
        amount,
        keep_installment_count: bool,
        penalty_percentage=ZERO,
        as_of: Optional[DateLike] = None,
        capital_before=None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> PrepaymentOutcome:
        """
        Record a capital payment and restructure the open schedule

        Pass `capital_before` from the preview the payer confirmed. A request
        with the same loan, amount and capitals inside the dedup window returns
        the existing record with `duplicate=True` instead of paying twice.
        Without `capital_before` there is no duplicate check, which is why the
        HTTP endpoint requires it.

        Raises:
            ValidationError: bad amount or penalty
            PreconditionError: overdue or partially paid rows, a closed loan, or
                a capital_before that no longer matches the loan
            ReconciliationError: the restructured rows do not reconcile
        """
        amount = round2(amount)
        as_of = self._as_of(as_of)

        with self.locks.hold(loan_id):
            if capital_before is not None:
                capital_before = round2(capital_before)
                key = capital_payment_key(loan_id, amount, capital_before, max(ZERO, capital_before - amount))
                since = datetime.now(timezone.utc) - timedelta(
                    seconds=self.config.capital_payment_dedup_window_seconds)
                existing = self.persistence.find_capital_payment(loan_id, key, since)
                if existing is not None:
                    self._audit(AuditEventType.CAPITAL_PAYMENT_DUPLICATE_SUPPRESSED, loan_id, {
                        'capital_payment_id': existing.id,
                        'amount': amount
                    }, user_id=user_id)
                    log_action(logger, "info", "Duplicate capital payment suppressed", loan_id=loan_id,
                               action="capital_payment_duplicate_suppressed",
                               extra={'capital_payment_id': existing.id})
                    return PrepaymentOutcome(
                        capital_payment=existing,
                        duplicate=True,
                        new_balance=self.get_balance(loan_id).total_balance
                    )

            state = self.load_state(loan_id)
            self._require_open(state.loan)
            snapshot = reconstruct_balance(state.loan, state.installments, state.payments)
            plan = plan_prepayment(state.loan, state.installments, snapshot, amount,
                                   keep_installment_count, as_of, penalty_percentage)
            if capital_before is not None and plan.capital_before != capital_before:
                raise PreconditionError(
                    f"Pending principal is {plan.capital_before}, not {capital_before}; preview again"
                )

            now = datetime.now(timezone.utc)
            capital_payment = CapitalPayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                amount=plan.amount,
                capital_before=plan.capital_before,
                capital_after=plan.capital_after,
                keep_installment_count=keep_installment_count,
                payment_date=as_of,
                idempotency_key=plan.idempotency_key,
                penalty_percentage=plan.penalty_percentage,
                penalty_amount=plan.penalty_amount,
                notes=notes
            )

            with self.persistence.atomic():
                if plan.updated:
                    self.persistence.upsert_installments(plan.updated)
                if plan.deleted:
                    self.persistence.delete_installments([row.id for row in plan.deleted])
                if plan.penalty_charge:
                    self.persistence.upsert_installments([plan.penalty_charge])
                self.persistence.insert_capital_payment(capital_payment)
                if state.loan.is_indefinite:
                    self.persistence.update_loan(loan_id, {'amount': plan.capital_after})
                self._audit(AuditEventType.CAPITAL_PAYMENT_APPLIED, loan_id, {
                    'capital_payment_id': capital_payment.id,
                    'amount': plan.amount,
                    'capital_before': plan.capital_before,
                    'capital_after': plan.capital_after,
                    'keep_installment_count': keep_installment_count,
                    'installments_before': plan.installment_count_before,
                    'installments_after': plan.installment_count_after,
                    'penalty_amount': plan.penalty_amount
                }, user_id=user_id)
                new_snapshot = self._refresh(loan_id, as_of)

        log_action(logger, "info", "Capital payment applied", loan_id=loan_id,
                   action="capital_payment_applied",
                   extra={'amount': str(plan.amount), 'capital_after': str(plan.capital_after),
                          'new_balance': str(new_snapshot.total_balance)})
        return PrepaymentOutcome(
            capital_payment=capital_payment,
            duplicate=False,
            new_balance=new_snapshot.total_balance,
            plan=plan
        )

    # ------------------------------------------------------------------
    # Settlement

    def compute_settlement(self, loan_id: str, as_of: Optional[DateLike] = None) -> SettlementBreakdown:
        state = self.load_state(loan_id)
        snapshot = reconstruct_balance(state.loan, state.installments, state.payments)
        late_fees = compute_late_fee_breakdown(state.loan, state.installments, self._as_of(as_of))
        return compute_settlement(snapshot, late_fees)

    def settle_loan(
        self,
        loan_id: str,
        capital,
        interest=ZERO,
        late_fee=ZERO,
        as_of: Optional[DateLike] = None,
        payment_method: str = "cash",
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> SettlementOutcome:
        """
        Close a loan early

        The full pending capital must be paid; interest and late fee may be
        less than pending. Open rows are flagged settled (not paid) and the
        loan is marked paid.
        """
        as_of = self._as_of(as_of)

        with self.locks.hold(loan_id):
            state = self.load_state(loan_id)
            self._require_open(state.loan)
            snapshot = reconstruct_balance(state.loan, state.installments, state.payments)
            late_fees = compute_late_fee_breakdown(state.loan, state.installments, as_of)
            breakdown = compute_settlement(snapshot, late_fees)
            amounts = validate_settlement(breakdown, capital, interest, late_fee)

            now = datetime.now(timezone.utc)
            payment = Payment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                amount=amounts.total,
                principal_amount=amounts.capital,
                interest_amount=amounts.interest,
                late_fee=amounts.late_fee,
                payment_date=as_of,
                kind=PaymentKind.SETTLEMENT,
                payment_method=payment_method,
                reference=reference,
                notes=notes
            )

            settled = [row for row in state.installments if row.is_open]
            for row in settled:
                row.is_settled = True
                row.paid_date = as_of

            fields = {
                'status': LoanStatus.PAID,
                'remaining_balance': ZERO,
                'current_late_fee': ZERO,
                'next_payment_date': None,
                'updated_at': now
            }
            if state.loan.is_indefinite:
                fields['amount'] = ZERO

            with self.persistence.atomic():
                self.persistence.insert_payment(payment)
                if settled:
                    self.persistence.upsert_installments(settled)
                self.persistence.update_loan(loan_id, fields)
                self._audit(AuditEventType.LOAN_SETTLED, loan_id, {
                    'payment_id': payment.id,
                    'capital': amounts.capital,
                    'interest': amounts.interest,
                    'late_fee': amounts.late_fee,
                    'interest_forgiven': amounts.interest_forgiven,
                    'late_fee_forgiven': amounts.late_fee_forgiven,
                    'settled_installments': len(settled)
                }, user_id=user_id)

        log_action(logger, "info", "Loan settled", loan_id=loan_id, action="loan_settled",
                   extra={'total': str(amounts.total), 'settled_installments': len(settled)})
        return SettlementOutcome(
            payment=payment,
            breakdown=breakdown,
            amounts=amounts,
            settled_installments=len(settled)
        )
