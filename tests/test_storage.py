"""
Tests for storage backends, transaction support and ledger persistence
"""

import pytest
import threading
from decimal import Decimal
from datetime import date, datetime, timedelta, timezone

from loan_ledger.models import (
    AmortizationType, CapitalPayment, Installment, LateFeeConfig, Loan, LoanStatus,
    Payment, PaymentFrequency, PaymentKind, new_id
)
from loan_ledger.persistence import StorageLedgerPersistence
from loan_ledger.storage import InMemoryStorage, SQLiteStorage, serialize_value


test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


def make_loan():
    now = datetime.now(timezone.utc)
    return Loan(
        id="LOAN001",
        created_at=now,
        updated_at=now,
        amount=Decimal('3000'),
        interest_rate=Decimal('2.5'),
        term=3,
        amortization_type=AmortizationType.FRENCH,
        payment_frequency=PaymentFrequency.BIWEEKLY,
        start_date=date(2024, 1, 1),
        late_fee=LateFeeConfig(enabled=True, rate=Decimal('1.5'), grace_period_days=2)
    )


def make_capital_payment(key, created_at):
    return CapitalPayment(
        id=new_id(),
        created_at=created_at,
        updated_at=created_at,
        loan_id="LOAN001",
        amount=Decimal('500'),
        capital_before=Decimal('3000'),
        capital_after=Decimal('2500'),
        keep_installment_count=True,
        payment_date=date(2024, 1, 10),
        idempotency_key=key
    )


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "ledger.db")
    yield backend
    backend.close()


class TestStorageBackends:
    """Test behaviour shared by every backend"""

    def test_basic_operations(self, storage):
        """Test save, load, find and delete"""
        storage.save("test_table", "record_1", test_data)
        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other"})

        assert storage.load("test_table", "record_1") == test_data
        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "missing")
        assert len(storage.load_all("test_table")) == 2
        assert [r["id"] for r in storage.find("test_table", {"name": "Other"})] == ["record_2"]

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.load("test_table", "record_1") is None

    def test_atomic_commit(self, storage):
        """Test writes inside a committed block persist"""
        with storage.atomic():
            storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data

    def test_atomic_rollback(self, storage):
        """Test writes inside a failed block are discarded"""
        storage.save("test_table", "record_1", test_data)

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("test_table", "record_2", {"id": "record_2"})
                storage.delete("test_table", "record_1")
                raise RuntimeError("boom")

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "record_2")

    def test_nested_atomic_joins_outer(self, storage):
        """Test an inner block commits only with the outer one"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("test_table", "record_1", test_data)
                assert storage.in_transaction
                raise RuntimeError("boom")

        assert not storage.exists("test_table", "record_1")
        assert not storage.in_transaction

    def test_find_by_loan(self, storage):
        """Test loan filters combine with other fields"""
        storage.save("rows", "r1", {"id": "r1", "loan_id": "LOAN001", "kind": "regular"})
        storage.save("rows", "r2", {"id": "r2", "loan_id": "LOAN001", "kind": "charge"})
        storage.save("rows", "r3", {"id": "r3", "loan_id": "LOAN002", "kind": "regular"})

        assert sorted(r["id"] for r in storage.find("rows", {"loan_id": "LOAN001"})) == ["r1", "r2"]
        assert [r["id"] for r in storage.find("rows", {"loan_id": "LOAN001", "kind": "charge"})] == ["r2"]
        assert storage.find("rows", {"loan_id": "LOAN003"}) == []

    def test_other_thread_waits_for_transaction(self, storage):
        """Test a second loan's transaction cannot commit a failing one's writes"""
        entered = threading.Event()
        writer_done = threading.Event()

        def writer():
            entered.wait(5)
            with storage.atomic():
                storage.save("rows", "other", {"id": "other", "loan_id": "LOAN002"})
            writer_done.set()

        thread = threading.Thread(target=writer)
        thread.start()
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("rows", "mine", {"id": "mine", "loan_id": "LOAN001"})
                entered.set()
                assert not writer_done.wait(0.2)
                raise RuntimeError("disk full")
        thread.join(5)

        assert writer_done.is_set()
        assert not storage.exists("rows", "mine")
        assert storage.exists("rows", "other")

class TestSerialization:
    """Test storage value conversion"""

    def test_serialize_value(self):
        """Test decimals, dates and enums become strings"""
        value = serialize_value({
            'amount': Decimal('10.50'),
            'due': date(2024, 2, 1),
            'status': LoanStatus.OVERDUE,
            'rows': [Decimal('1'), None]
        })
        assert value == {'amount': '10.50', 'due': '2024-02-01', 'status': 'overdue', 'rows': ['1', None]}


class TestLedgerPersistence:
    """Test the ledger persistence mapping"""

    def test_loan_round_trip(self, storage):
        """Test a loan survives storage with its late fee settings"""
        persistence = StorageLedgerPersistence(storage)
        loan = make_loan()
        persistence.save_loan(loan)

        loaded = persistence.get_loan("LOAN001")

        assert loaded == loan
        assert loaded.late_fee.rate == Decimal('1.5')
        assert persistence.get_loan("missing") is None

    def test_update_loan(self, storage):
        """Test partial loan updates"""
        persistence = StorageLedgerPersistence(storage)
        persistence.save_loan(make_loan())

        loan = persistence.update_loan("LOAN001", {'status': LoanStatus.PAID,
                                                   'remaining_balance': Decimal('0')})

        assert loan.status == LoanStatus.PAID
        assert persistence.get_loan("LOAN001").status == LoanStatus.PAID
        with pytest.raises(AttributeError):
            persistence.update_loan("LOAN001", {'no_such_field': 1})

    def test_installments_sorted_by_due_date(self, storage):
        """Test installments come back in due date order"""
        persistence = StorageLedgerPersistence(storage)
        late = Installment.create("LOAN001", 2, date(2024, 3, 1), Decimal('100'), Decimal('5'))
        early = Installment.create("LOAN001", 1, date(2024, 2, 1), Decimal('100'), Decimal('5'))
        other = Installment.create("LOAN002", 1, date(2024, 1, 1), Decimal('100'), Decimal('5'))
        persistence.upsert_installments([late, early, other])

        rows = persistence.list_installments("LOAN001")

        assert [row.installment_number for row in rows] == [1, 2]
        assert rows[0].total_amount == Decimal('105.00')

        persistence.delete_installments([early.id])
        assert [row.id for row in persistence.list_installments("LOAN001")] == [late.id]

    def test_duplicate_payment_rejected(self, storage):
        """Test payments are insert-only"""
        persistence = StorageLedgerPersistence(storage)
        now = datetime.now(timezone.utc)
        payment = Payment(
            id="PAY001",
            created_at=now,
            updated_at=now,
            loan_id="LOAN001",
            amount=Decimal('100'),
            principal_amount=Decimal('100'),
            interest_amount=Decimal('0'),
            late_fee=Decimal('0'),
            payment_date=date(2024, 2, 1),
            kind=PaymentKind.SETTLEMENT
        )
        persistence.insert_payment(payment)

        with pytest.raises(ValueError):
            persistence.insert_payment(payment)
        assert persistence.list_payments("LOAN001")[0].kind == PaymentKind.SETTLEMENT

    def test_find_capital_payment_window(self, storage):
        """Test idempotency lookups only see recent records"""
        persistence = StorageLedgerPersistence(storage)
        now = datetime.now(timezone.utc)
        persistence.insert_capital_payment(make_capital_payment("old", now - timedelta(minutes=10)))
        recent = make_capital_payment("new", now)
        persistence.insert_capital_payment(recent)

        since = now - timedelta(seconds=120)
        assert persistence.find_capital_payment("LOAN001", "old", since) is None
        assert persistence.find_capital_payment("LOAN001", "new", since).id == recent.id
