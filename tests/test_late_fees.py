"""
Test suite for late fee calculation

Tests daily, monthly and compound accrual, grace periods, caps, the
per-installment breakdown and the distribution of late fee payments and
waivers.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from loan_ledger.errors import ValidationError
from loan_ledger.late_fees import (
    LateFeeBreakdown, InstallmentLateFee, calculate_late_fee, installment_late_fee,
    compute_late_fee_breakdown, distribute_late_fee_removal, distribute_late_fee_payment
)
from loan_ledger.models import (
    AmortizationType, Installment, LateFeeCalculationType, LateFeeConfig, Loan, PaymentFrequency
)
from loan_ledger.schedule import generate_schedule


def daily_config(rate='2', grace=0, cap='0'):
    return LateFeeConfig(enabled=True, rate=Decimal(rate), grace_period_days=grace,
                         max_late_fee=Decimal(cap), calculation_type=LateFeeCalculationType.DAILY)


def make_loan(late_fee):
    now = datetime.now(timezone.utc)
    return Loan(
        id="LOAN001",
        created_at=now,
        updated_at=now,
        amount=Decimal('3000'),
        interest_rate=Decimal('2'),
        term=3,
        amortization_type=AmortizationType.SIMPLE,
        payment_frequency=PaymentFrequency.MONTHLY,
        start_date=date(2024, 1, 1),
        late_fee=late_fee
    )


def fee_item(installment_id, remaining, due=date(2024, 2, 1)):
    return InstallmentLateFee(
        installment_id=installment_id,
        installment_number=1,
        due_date=due,
        days_overdue=10,
        basis=Decimal('1000'),
        late_fee=remaining,
        late_fee_paid=Decimal('0'),
        remaining=remaining
    )


class TestCalculateLateFee:
    """Test fee accrual for a single due item"""

    def test_daily_fee_after_grace(self):
        """Test 1,000 at 2% daily, 3 grace days, 10 days late"""
        days, fee = calculate_late_fee(Decimal('1000'), date(2024, 3, 1), daily_config(grace=3),
                                       date(2024, 3, 11))
        assert days == 7
        assert fee == Decimal('140.00')

    def test_within_grace_period(self):
        """Test no fee inside the grace period"""
        assert calculate_late_fee(Decimal('1000'), date(2024, 3, 1), daily_config(grace=3),
                                  date(2024, 3, 4)) == (0, Decimal('0'))

    def test_not_yet_due(self):
        """Test no fee before the due date"""
        assert calculate_late_fee(Decimal('1000'), date(2024, 3, 1), daily_config(),
                                  date(2024, 2, 20)) == (0, Decimal('0'))

    def test_disabled(self):
        """Test disabled late fees accrue nothing"""
        config = daily_config()
        config.enabled = False
        assert calculate_late_fee(Decimal('1000'), date(2024, 3, 1), config,
                                  date(2024, 6, 1)) == (0, Decimal('0'))

    def test_monthly_counts_started_months(self):
        """Test 45 days overdue counts as two months"""
        config = LateFeeConfig(enabled=True, rate=Decimal('5'),
                               calculation_type=LateFeeCalculationType.MONTHLY)
        days, fee = calculate_late_fee(Decimal('1000'), date(2024, 3, 1), config, date(2024, 4, 15))
        assert days == 45
        assert fee == Decimal('100.00')

    def test_compound(self):
        """Test compound accrual over 10 days at 1%"""
        config = LateFeeConfig(enabled=True, rate=Decimal('1'),
                               calculation_type=LateFeeCalculationType.COMPOUND)
        days, fee = calculate_late_fee(Decimal('1000'), date(2024, 3, 1), config, date(2024, 3, 11))
        assert days == 10
        assert fee == Decimal('104.62')

    def test_cap(self):
        """Test the maximum late fee caps accrual"""
        days, fee = calculate_late_fee(Decimal('1000'), date(2024, 3, 1), daily_config(cap='250'),
                                       date(2024, 3, 31))
        assert days == 30
        assert fee == Decimal('250.00')


class TestInstallmentLateFee:
    """Test the late fee position of an installment"""

    def test_collected_fee_is_subtracted(self):
        """Test late_fee_paid reduces what is still owed"""
        row = Installment.create("LOAN001", 1, date(2024, 3, 1), Decimal('1000'), Decimal('200'))
        row.late_fee_paid = Decimal('40')

        item = installment_late_fee(row, daily_config(grace=3), date(2024, 3, 11))

        assert item.late_fee == Decimal('140.00')
        assert item.remaining == Decimal('100.00')

    def test_paid_installment_accrues_nothing(self):
        """Test paid rows contribute zero regardless of the date"""
        row = Installment.create("LOAN001", 1, date(2024, 3, 1), Decimal('1000'), Decimal('200'))
        row.is_paid = True

        item = installment_late_fee(row, daily_config(), date(2024, 6, 1))

        assert item.late_fee == Decimal('0')
        assert item.remaining == Decimal('0')
        assert item.is_paid

    def test_interest_only_row_uses_total_as_basis(self):
        """Test rows without principal accrue on their total"""
        row = Installment.create("LOAN001", 1, date(2024, 3, 1), Decimal('0'), Decimal('150'))
        item = installment_late_fee(row, daily_config(rate='1'), date(2024, 3, 11))
        assert item.basis == Decimal('150.00')
        assert item.late_fee == Decimal('15.00')


class TestBreakdown:
    """Test the loan-wide breakdown"""

    def setup_method(self):
        """Set up test fixtures"""
        self.loan = make_loan(daily_config(rate='1'))
        self.rows = generate_schedule(self.loan)  # due 02-01, 03-01, 04-01

    def test_breakdown_sums_overdue_rows(self):
        """Test per-row fees and their total"""
        breakdown = compute_late_fee_breakdown(self.loan, self.rows, date(2024, 3, 11))

        assert [item.late_fee for item in breakdown.items] == [
            Decimal('390.00'), Decimal('100.00'), Decimal('0')
        ]
        assert [item.days_overdue for item in breakdown.items] == [39, 10, 0]
        assert breakdown.total_late_fee == Decimal('490.00')
        assert len(breakdown.overdue_items) == 2

    def test_breakdown_is_idempotent(self):
        """Test two computations without payments are identical"""
        first = compute_late_fee_breakdown(self.loan, self.rows, date(2024, 3, 11))
        second = compute_late_fee_breakdown(self.loan, self.rows, date(2024, 3, 11))
        assert first == second

    def test_paid_rows_excluded(self):
        """Test paid installments contribute nothing"""
        self.rows[0].is_paid = True
        breakdown = compute_late_fee_breakdown(self.loan, self.rows, date(2024, 3, 11))
        assert breakdown.total_late_fee == Decimal('100.00')


class TestFeeRemoval:
    """Test proportional late fee waivers"""

    def test_proportional_shares(self):
        """Test shares follow each installment's fee"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('500.00'),
                                     [fee_item("A", Decimal('400.00')), fee_item("B", Decimal('100.00'))])

        shares = distribute_late_fee_removal(Decimal('250'), breakdown)

        assert shares == {"A": Decimal('200.00'), "B": Decimal('50.00')}

    def test_residual_on_last_share(self):
        """Test the shares add up to the removed amount exactly"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('300.00'),
                                     [fee_item(key, Decimal('100.00')) for key in "ABC"])

        shares = distribute_late_fee_removal(Decimal('100'), breakdown)

        assert list(shares.values()) == [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]

    def test_removal_above_total_rejected(self):
        """Test a waiver cannot exceed the current fee"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('500.00'),
                                     [fee_item("A", Decimal('500.00'))])
        with pytest.raises(ValidationError):
            distribute_late_fee_removal(Decimal('600'), breakdown)

    def test_non_positive_removal_rejected(self):
        """Test zero waivers are rejected"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('500.00'),
                                     [fee_item("A", Decimal('500.00'))])
        with pytest.raises(ValidationError):
            distribute_late_fee_removal(Decimal('0'), breakdown)

    def test_no_installment_fee(self):
        """Test nothing is distributed when no installment carries a fee"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('0'), [])
        assert distribute_late_fee_removal(Decimal('10'), breakdown) == {}


class TestFeePayment:
    """Test late fee payments"""

    def test_oldest_first(self):
        """Test payments fill the oldest fee first"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('500.00'),
                                     [fee_item("A", Decimal('400.00')), fee_item("B", Decimal('100.00'))])

        assert distribute_late_fee_payment(Decimal('450'), breakdown) == {
            "A": Decimal('400.00'), "B": Decimal('50.00')
        }

    def test_payment_above_fee_rejected(self):
        """Test paying more late fee than accrued is rejected"""
        breakdown = LateFeeBreakdown(date(2024, 3, 11), Decimal('500.00'),
                                     [fee_item("A", Decimal('500.00'))])
        with pytest.raises(ValidationError):
            distribute_late_fee_payment(Decimal('501'), breakdown)
