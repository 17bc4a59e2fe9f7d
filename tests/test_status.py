"""
Test suite for status module

Tests arrears detection, timely repayment percentage and derived loan status.
"""

from decimal import Decimal
from datetime import date
from dataclasses import replace

from loan_engine.allocation import LoanState, LoanStatus, Payment
from loan_engine.config import EngineConfig
from loan_engine.schedule import ScheduleInstallment, InstallmentStatus
from loan_engine.status import (
    LoanStatusEvaluator, check_arrears, derive_status, timely_repayment_percentage
)


def installment(number, due, amount='1000', status=InstallmentStatus.UNPAID):
    principal = Decimal(amount)
    paid = principal if status == InstallmentStatus.PAID else Decimal('0')
    return ScheduleInstallment(
        sequence_number=number,
        due_date=due,
        principal_amount=principal,
        interest_amount=Decimal('0'),
        fee_amount=Decimal('0'),
        outstanding_principal=Decimal('0'),
        principal_paid=paid,
        payment_status=status
    )


def payment(amount, paid_on):
    return Payment(amount=Decimal(amount), payment_date=paid_on)


class TestArrears:
    """Test arrears detection"""

    def setup_method(self):
        self.installments = [
            installment(1, date(2024, 1, 1)),
            installment(2, date(2024, 2, 1)),
            installment(3, date(2024, 3, 1)),
        ]

    def test_days_from_oldest_unpaid_due_date(self):
        arrears = check_arrears(self.installments, date(2024, 2, 15))

        assert arrears.in_arrears
        assert arrears.days_in_arrears == 45
        assert arrears.overdue_installments == (1, 2)
        assert arrears.overdue_amount == Decimal('2000')
        assert arrears.oldest_due_date == date(2024, 1, 1)

    def test_due_today_is_not_overdue(self):
        arrears = check_arrears(self.installments, date(2024, 1, 1))

        assert not arrears.in_arrears
        assert arrears.days_in_arrears == 0

    def test_paid_installments_ignored(self):
        installments = [
            installment(1, date(2024, 1, 1), status=InstallmentStatus.PAID),
        ] + self.installments[1:]
        arrears = check_arrears(installments, date(2024, 2, 15))

        assert arrears.days_in_arrears == 14
        assert arrears.overdue_installments == (2,)

    def test_partially_paid_still_overdue(self):
        partial = replace(self.installments[0], principal_paid=Decimal('999'),
                          payment_status=InstallmentStatus.PARTIALLY_PAID)
        arrears = check_arrears([partial], date(2024, 1, 2))

        assert arrears.in_arrears
        assert arrears.overdue_amount == Decimal('1')


class TestTimelyRepaymentPercentage:
    """Test TRP over installments due to date"""

    def setup_method(self):
        self.installments = [
            installment(1, date(2024, 1, 1)),
            installment(2, date(2024, 2, 1)),
            installment(3, date(2024, 3, 1)),
        ]

    def test_nothing_due_is_full_score(self):
        assert timely_repayment_percentage(self.installments, [], date(2023, 12, 31)) == 100

    def test_nothing_paid(self):
        assert timely_repayment_percentage(self.installments, [], date(2024, 3, 15)) == 0

    def test_late_payment_recovers_later_installments(self):
        payments = [
            payment('1000', date(2024, 1, 1)),
            payment('500', date(2024, 2, 1)),
            payment('1500', date(2024, 2, 20)),
        ]
        # Installment 2 missed; 1 and 3 covered by their due dates
        assert timely_repayment_percentage(self.installments, payments, date(2024, 3, 15)) == 67

    def test_only_due_installments_count(self):
        payments = [payment('1000', date(2024, 1, 1))]
        assert timely_repayment_percentage(self.installments, payments, date(2024, 1, 15)) == 100
        assert timely_repayment_percentage(self.installments, payments, date(2024, 2, 1)) == 50

    def test_within_tolerance_counts_as_timely(self):
        payments = [payment('999.995', date(2023, 12, 28))]
        assert timely_repayment_percentage(self.installments, payments, date(2024, 1, 1)) == 100

    def test_one_of_three(self):
        payments = [payment('1000', date(2024, 1, 1))]
        assert timely_repayment_percentage(self.installments, payments, date(2024, 3, 1)) == 33


class TestDeriveStatus:
    """Test derived loan status"""

    def setup_method(self):
        self.installments = (
            installment(1, date(2024, 1, 1)),
            installment(2, date(2024, 2, 1)),
        )
        self.state = LoanState(outstanding_balance=Decimal('2000'), installments=self.installments)

    def test_active(self):
        assert derive_status(self.state, date(2023, 12, 1)).status == LoanStatus.ACTIVE

    def test_in_arrears(self):
        derived = derive_status(self.state, date(2024, 1, 11))

        assert derived.status == LoanStatus.IN_ARREARS
        assert derived.days_in_arrears == 10

    def test_closed(self):
        state = replace(self.state, outstanding_balance=Decimal('0'))
        assert derive_status(state, date(2024, 6, 1)).status == LoanStatus.CLOSED

    def test_overpaid(self):
        state = replace(self.state, outstanding_balance=Decimal('-50'))
        derived = derive_status(state, date(2024, 6, 1))

        assert derived.status == LoanStatus.OVERPAID
        assert derived.overpaid_amount == Decimal('50')

    def test_written_off_is_sticky(self):
        state = replace(self.state, status=LoanStatus.WRITTEN_OFF, outstanding_balance=Decimal('0'))
        assert derive_status(state, date(2024, 6, 1)).status == LoanStatus.WRITTEN_OFF


class TestLoanStatusEvaluator:
    """Test the status report"""

    def test_report(self):
        installments = (
            installment(1, date(2024, 1, 1), status=InstallmentStatus.PAID),
            installment(2, date(2024, 2, 1)),
        )
        state = LoanState(
            outstanding_balance=Decimal('1000'),
            installments=installments,
            payments=(payment('1000', date(2024, 1, 1)),),
            loan_id='LN-7'
        )
        report = LoanStatusEvaluator(EngineConfig()).report(state, date(2024, 2, 5))

        assert report.as_of == date(2024, 2, 5)
        assert report.derived.status == LoanStatus.IN_ARREARS
        assert report.arrears.days_in_arrears == 4
        assert report.timely_repayment_percentage == 50
        assert report.balances.principal == Decimal('1000')
        assert report.total_paid == Decimal('1000')
