"""
Test suite for servicing module

Tests the loan lifecycle: opening a loan, recording payments, early
settlement, write-off and status reporting.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_engine.allocation import LoanStatus, Payment
from loan_engine.config import EngineConfig
from loan_engine.currency import Currency, quantize_amount
from loan_engine.errors import InvalidChargeError, InvalidLoanStateError
from loan_engine.fees import FeeStructure, FeeCalculationType, ChargeTimeType, AppliedLimit
from loan_engine.schedule import LoanTerms, CalculationMethod, InstallmentStatus
from loan_engine.servicing import LoanServicer


class TestLoanServicer:
    """Test loan servicing operations"""

    def setup_method(self):
        self.servicer = LoanServicer(EngineConfig(), Currency.KES)
        # Interest-free loan: three installments of 1,000
        self.terms = LoanTerms(
            principal=Decimal('3000'),
            annual_interest_rate=Decimal('0'),
            term=3,
            installment_count=3,
            calculation_method=CalculationMethod.FLAT,
            first_repayment_date=date(2024, 2, 1)
        )
        self.state = self.servicer.open_loan(self.terms, loan_id="LN-100")

    def pay(self, state, amount, paid_on=date(2024, 2, 1)):
        return self.servicer.record_payment(state, Payment(Decimal(amount), paid_on))

    def test_open_loan(self):
        assert self.state.loan_id == "LN-100"
        assert self.state.status == LoanStatus.ACTIVE
        assert self.state.outstanding_balance == Decimal('3000')
        assert len(self.state.installments) == 3
        assert self.state.payments == ()

    def test_open_flat_loan_outstanding_is_schedule_total(self):
        terms = LoanTerms(
            principal=Decimal('100000'), annual_interest_rate=Decimal('12'), term=12,
            installment_count=12, calculation_method="flat",
            first_repayment_date=date(2024, 2, 1)
        )
        state = self.servicer.open_loan(terms)

        assert quantize_amount(state.outstanding_balance, Currency.KES) == Decimal('244000.00')

    def test_record_payment(self):
        outcome = self.pay(self.state, '1000')

        assert outcome.allocation.principal_applied == Decimal('1000')
        assert outcome.state.outstanding_balance == Decimal('2000')
        assert outcome.state.installments[0].payment_status == InstallmentStatus.PAID
        assert outcome.state.installments[1].payment_status == InstallmentStatus.UNPAID
        assert outcome.state.total_paid == Decimal('1000')
        assert outcome.state.status == LoanStatus.ACTIVE

        # Original state untouched
        assert self.state.outstanding_balance == Decimal('3000')
        assert self.state.payments == ()

    def test_full_repayment_closes_loan(self):
        state = self.pay(self.state, '1000').state
        state = self.pay(state, '1000', date(2024, 3, 1)).state
        outcome = self.pay(state, '1000', date(2024, 4, 1))

        assert outcome.state.status == LoanStatus.CLOSED
        assert outcome.state.outstanding_balance == Decimal('0')
        assert all(i.is_paid for i in outcome.state.installments)

    def test_overpayment(self):
        outcome = self.pay(self.state, '3500')

        assert outcome.state.status == LoanStatus.OVERPAID
        assert outcome.allocation.overpaid_amount == Decimal('500')
        assert outcome.state.outstanding_balance == Decimal('-500')
        assert all(i.is_paid for i in outcome.state.installments)

    def test_payment_against_written_off_loan_rejected(self):
        written_off = self.servicer.write_off(self.state).state

        with pytest.raises(InvalidLoanStateError, match="written-off"):
            self.pay(written_off, '100')

    def test_settlement_quote(self):
        state = self.pay(self.state, '1000').state
        quote = self.servicer.settlement_quote(state, fee=Decimal('50'))

        assert quote.outstanding_balance == Decimal('2000')
        assert quote.settlement_fee == Decimal('50')
        assert quote.payoff_amount == Decimal('2050')

    def test_settlement_quote_from_fee_structure(self):
        fee = FeeStructure("Early settlement", FeeCalculationType.PERCENTAGE, Decimal('2'),
                           charge_time_type=ChargeTimeType.EARLY_SETTLEMENT,
                           min_amount=Decimal('50'))
        state = self.pay(self.state, '1000').state
        quote = self.servicer.settlement_quote(state, fee_structure=fee)

        assert quote.settlement_fee == Decimal('50')
        assert quote.fee_detail.applied_limit == AppliedLimit.MINIMUM
        assert quote.payoff_amount == Decimal('2050')

    def test_settlement_quote_invalid(self):
        fee = FeeStructure("Early settlement", FeeCalculationType.FIXED, Decimal('10'))

        with pytest.raises(InvalidChargeError, match="not both"):
            self.servicer.settlement_quote(self.state, fee=Decimal('10'), fee_structure=fee)

        with pytest.raises(InvalidChargeError, match="cannot be negative"):
            self.servicer.settlement_quote(self.state, fee=Decimal('-10'))

        closed = self.pay(self.state, '3000').state
        with pytest.raises(InvalidLoanStateError, match="no outstanding balance"):
            self.servicer.settlement_quote(closed)

    def test_early_settlement_closes_loan(self):
        state = self.pay(self.state, '1000').state
        outcome = self.servicer.early_settlement(
            state, date(2024, 2, 20), fee=Decimal('50'), reference="MP-123"
        )

        assert outcome.quote.payoff_amount == Decimal('2050')
        assert outcome.allocation.fee_applied == Decimal('50')
        assert outcome.allocation.principal_applied == Decimal('2000')
        assert outcome.state.status == LoanStatus.CLOSED
        assert outcome.state.outstanding_balance == Decimal('0')
        assert outcome.state.unscheduled_fees_outstanding == Decimal('0')
        assert all(i.is_paid for i in outcome.state.installments)
        assert outcome.state.payments[-1].reference == "MP-123"

    def test_early_settlement_without_fee(self):
        outcome = self.servicer.early_settlement(self.state, date(2024, 1, 15))

        assert outcome.quote.settlement_fee == Decimal('0')
        assert outcome.state.status == LoanStatus.CLOSED

    def test_write_off(self):
        state = self.pay(self.state, '1000').state
        result = self.servicer.write_off(state, reason="Borrower deceased")

        assert result.written_off_amount == Decimal('2000')
        assert result.previous_outstanding == Decimal('2000')
        assert result.resulting_outstanding_balance == Decimal('0')
        assert result.state.status == LoanStatus.WRITTEN_OFF
        # Write-off is not a payment
        assert result.state.total_paid == Decimal('1000')
        assert result.state.installments == state.installments

    def test_write_off_is_idempotent(self):
        first = self.servicer.write_off(self.state)
        second = self.servicer.write_off(first.state)

        assert second.written_off_amount == Decimal('0')
        assert second.state == first.state

    def test_loan_status(self):
        report = self.servicer.loan_status(self.state, date(2024, 3, 10))

        assert report.derived.status == LoanStatus.IN_ARREARS
        assert report.arrears.days_in_arrears == 38
        assert report.timely_repayment_percentage == 0

        paid = self.pay(self.state, '2000').state
        report = self.servicer.loan_status(paid, date(2024, 3, 10))
        assert report.derived.status == LoanStatus.ACTIVE
        assert report.timely_repayment_percentage == 100
