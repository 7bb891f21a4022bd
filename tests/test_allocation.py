"""
Test suite for payment allocation

Tests the interest-first split of a payment, replay of the payment history
and selection of the current due item.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from loan_ledger.allocation import (
    InstallmentProgress, allocate_payment, find_current_due, replay_payments,
    validate_payment_request
)
from loan_ledger.errors import ValidationError
from loan_ledger.models import Installment, Payment, PaymentKind, new_id


def make_payment(due_date, interest, principal, charge=False, kind=PaymentKind.REGULAR,
                 payment_date=date(2024, 2, 1)):
    now = datetime.now(timezone.utc)
    interest = Decimal(interest)
    principal = Decimal(principal)
    return Payment(
        id=new_id(),
        created_at=now,
        updated_at=now,
        loan_id="LOAN001",
        amount=interest + principal,
        principal_amount=principal,
        interest_amount=interest,
        late_fee=Decimal('0'),
        payment_date=payment_date,
        due_date=due_date,
        charge_payment=charge,
        kind=kind
    )


class TestAllocatePayment:
    """Test splitting a payment against one installment"""

    def setup_method(self):
        """Set up test fixtures"""
        self.row = Installment.create("LOAN001", 1, date(2024, 2, 1), Decimal('1000'), Decimal('200'))
        self.progress = InstallmentProgress(self.row)

    def test_full_installment(self):
        """Test a payment of the full installment"""
        result = allocate_payment(Decimal('1200'), self.row, self.progress)

        assert result.interest_applied == Decimal('200.00')
        assert result.principal_applied == Decimal('1000.00')
        assert result.applies_to_next == Decimal('0')
        assert result.remaining_after == Decimal('0.00')
        assert result.completes_installment

    def test_interest_first(self):
        """Test a partial payment covers interest before principal"""
        result = allocate_payment(Decimal('150'), self.row, self.progress)

        assert result.interest_applied == Decimal('150.00')
        assert result.principal_applied == Decimal('0')
        assert result.remaining_after == Decimal('1050.00')
        assert not result.completes_installment

    def test_after_partial_payment(self):
        """Test earlier payments reduce what is still due"""
        self.progress.apply(Decimal('150'))

        result = allocate_payment(Decimal('300'), self.row, self.progress)

        assert result.interest_due == Decimal('50.00')
        assert result.interest_applied == Decimal('50.00')
        assert result.principal_applied == Decimal('250.00')

    def test_overpayment_rejected(self):
        """Test a payment above the outstanding balance is rejected"""
        with pytest.raises(ValidationError):
            allocate_payment(Decimal('1300'), self.row, self.progress)

    def test_overpayment_preview(self):
        """Test the excess is reported when allowed"""
        result = allocate_payment(Decimal('1300'), self.row, self.progress, allow_excess=True)

        assert result.applied_amount == Decimal('1200.00')
        assert result.applies_to_next == Decimal('100.00')

    def test_within_tolerance_accepted(self):
        """Test a one-cent rounding difference is tolerated"""
        result = allocate_payment(Decimal('1200.01'), self.row, self.progress)
        assert result.completes_installment

    def test_non_positive_rejected(self):
        """Test zero and negative payments are rejected"""
        with pytest.raises(ValidationError):
            allocate_payment(Decimal('0'), self.row, self.progress)
        with pytest.raises(ValidationError):
            allocate_payment(Decimal('-5'), self.row, self.progress)

    def test_charge_goes_to_principal(self):
        """Test charges have no interest portion"""
        charge = Installment.create("LOAN001", 2, date(2024, 2, 1), Decimal('75'), Decimal('0'),
                                    is_charge=True)
        result = allocate_payment(Decimal('75'), charge, InstallmentProgress(charge))

        assert result.interest_applied == Decimal('0')
        assert result.principal_applied == Decimal('75.00')
        assert result.is_charge


class TestReplay:
    """Test replaying the payment history"""

    def setup_method(self):
        """Set up test fixtures"""
        self.first = Installment.create("LOAN001", 1, date(2024, 2, 1), Decimal('1000'), Decimal('200'))
        self.second = Installment.create("LOAN001", 2, date(2024, 3, 1), Decimal('1000'), Decimal('200'))
        self.charge = Installment.create("LOAN001", 3, date(2024, 2, 1), Decimal('50'), Decimal('0'),
                                         is_charge=True)
        self.rows = [self.first, self.second, self.charge]

    def test_payments_match_their_due_date(self):
        """Test each payment only covers rows of its due date"""
        progress = replay_payments(self.rows, [make_payment(date(2024, 2, 1), '200', '300')])

        assert progress[self.first.id].interest_due == Decimal('0')
        assert progress[self.first.id].principal_due == Decimal('700.00')
        assert progress[self.second.id].outstanding == Decimal('1200.00')
        assert progress[self.charge.id].outstanding == Decimal('50.00')

    def test_charge_payments_kept_apart(self):
        """Test charge payments never reach a regular installment"""
        progress = replay_payments(self.rows, [make_payment(date(2024, 2, 1), '0', '50', charge=True)])

        assert progress[self.charge.id].is_covered
        assert progress[self.first.id].outstanding == Decimal('1200.00')

    def test_settlement_payments_ignored(self):
        """Test settlement payments are not replayed against the schedule"""
        settlement = make_payment(None, '0', '2400', kind=PaymentKind.SETTLEMENT)
        progress = replay_payments(self.rows, [settlement])

        assert all(not item.has_payments for item in progress.values())

    def test_same_due_date_filled_by_number(self):
        """Test rows sharing a due date fill lowest number first"""
        extra = Installment.create("LOAN001", 4, date(2024, 2, 1), Decimal('40'), Decimal('0'),
                                   is_charge=True)
        progress = replay_payments(self.rows + [extra],
                                   [make_payment(date(2024, 2, 1), '0', '70', charge=True)])

        assert progress[self.charge.id].is_covered
        assert progress[extra.id].outstanding == Decimal('20.00')

    def test_current_due(self):
        """Test the current due item moves on once a row is covered"""
        progress = replay_payments(self.rows, [make_payment(date(2024, 2, 1), '200', '1000')])
        assert find_current_due(self.rows, progress) is self.charge

        progress = replay_payments(self.rows, [
            make_payment(date(2024, 2, 1), '200', '1000'),
            make_payment(date(2024, 2, 1), '0', '50', charge=True)
        ])
        assert find_current_due(self.rows, progress) is self.second

    def test_nothing_due(self):
        """Test paid rows leave no current due item"""
        for row in self.rows:
            row.is_paid = True
        assert find_current_due(self.rows, replay_payments(self.rows, [])) is None


class TestPaymentRequest:
    """Test payment request validation"""

    def test_late_fee_only(self):
        """Test a request may pay only late fees"""
        assert validate_payment_request('0', '25') == (Decimal('0.00'), Decimal('25.00'))

    def test_empty_request_rejected(self):
        """Test a request paying nothing is rejected"""
        with pytest.raises(ValidationError):
            validate_payment_request('0', '0')

    def test_negative_rejected(self):
        """Test negative components are rejected"""
        with pytest.raises(ValidationError):
            validate_payment_request('-1', '0')
        with pytest.raises(ValidationError):
            validate_payment_request('10', '-1')
