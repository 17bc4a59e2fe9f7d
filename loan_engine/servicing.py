"""
Loan Servicing Module

Servicing operations built on the schedule generator and the repayment
allocator: opening a loan, recording payments, early settlement and
write-off. Every operation takes a LoanState and returns a new one; the
persistence collaborator serializes writes and stores the result.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Union

from .allocation import (
    AllocationResult, AllocationStrategy, LoanState, LoanStatus, Payment,
    RepaymentAllocator, allocate_to_installments
)
from .config import EngineConfig, get_config
from .currency import Currency, to_decimal
from .errors import InvalidChargeError, InvalidLoanStateError
from .fees import CalculatedFee, FeeStructure
from .logging_config import get_logger, log_action
from .schedule import ChargeSpec, LoanTerms, ScheduleGenerator
from .status import LoanStatusEvaluator, LoanStatusReport


ZERO = Decimal('0')


@dataclass(frozen=True)
class RepaymentOutcome:
    """A recorded payment: its allocation and the loan state after it"""
    allocation: AllocationResult
    state: LoanState


@dataclass(frozen=True)
class SettlementQuote:
    """Amount needed to close a loan early"""
    outstanding_balance: Decimal
    settlement_fee: Decimal
    payoff_amount: Decimal
    fee_detail: Optional[CalculatedFee] = None


@dataclass(frozen=True)
class SettlementOutcome:
    quote: SettlementQuote
    allocation: AllocationResult
    state: LoanState


@dataclass(frozen=True)
class WriteOffResult:
    """Balance cancellation; not a payment"""
    written_off_amount: Decimal
    previous_outstanding: Decimal
    resulting_outstanding_balance: Decimal
    resulting_status: LoanStatus
    state: LoanState
    reason: Optional[str] = None


class LoanServicer:
    """
    Services loans from disbursement through closure or write-off
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 currency: Optional[Currency] = None):
        self.config = config or get_config()
        self.currency = currency or Currency[self.config.default_currency]

        self.generator = ScheduleGenerator(self.config, self.currency)
        self.allocator = RepaymentAllocator(self.config)
        self.evaluator = LoanStatusEvaluator(self.config)
        self.logger = get_logger("loan_engine.servicing")

    def open_loan(
        self,
        terms: LoanTerms,
        charges: Sequence[ChargeSpec] = (),
        today: Optional[date] = None,
        loan_id: Optional[str] = None
    ) -> LoanState:
        """
        Generate the schedule for a new loan and its initial state

        The initial outstanding balance is the schedule's total amount.
        """
        schedule = self.generator.generate(terms, charges, today)
        state = LoanState.from_schedule(schedule, loan_id=loan_id)

        log_action(
            self.logger, "info", "Loan schedule generated",
            action="open_loan", loan_id=loan_id,
            extra={
                "principal": str(terms.principal),
                "installments": terms.installment_count,
                "method": terms.calculation_method.value,
                "outstanding_balance": str(state.outstanding_balance)
            }
        )
        return state

    def record_payment(
        self,
        state: LoanState,
        payment: Payment,
        strategy: Union[str, AllocationStrategy, None] = None
    ) -> RepaymentOutcome:
        """
        Allocate a payment and apply it to the loan's installments

        Args:
            state: Current loan state
            payment: Payment being recorded
            strategy: Allocation strategy code from the loan product

        Returns:
            RepaymentOutcome with the allocation and the new state

        Raises:
            InvalidLoanStateError: If the loan has been written off
        """
        if state.status == LoanStatus.WRITTEN_OFF:
            raise InvalidLoanStateError("Cannot record a payment against a written-off loan")

        allocation = self.allocator.apply(state, payment.amount, strategy)
        installments = allocate_to_installments(
            state.installments, allocation, self.config.balance_epsilon
        )

        # Fees beyond the scheduled ones settle unscheduled charges
        scheduled_fees = sum((i.fee_outstanding for i in state.installments), ZERO)
        unscheduled_paid = min(
            state.unscheduled_fees_outstanding,
            max(ZERO, allocation.fee_applied - scheduled_fees)
        )

        new_state = replace(
            state,
            outstanding_balance=allocation.resulting_outstanding_balance,
            installments=tuple(installments),
            payments=state.payments + (payment,),
            status=allocation.resulting_status,
            penalties_outstanding=state.penalties_outstanding - allocation.penalty_applied,
            unscheduled_fees_outstanding=state.unscheduled_fees_outstanding - unscheduled_paid
        )

        log_action(
            self.logger, "info", "Loan payment recorded",
            action="record_payment", loan_id=state.loan_id,
            extra={
                "payment_date": payment.payment_date.isoformat(),
                "method": payment.method,
                "reference": payment.reference,
                **allocation.to_dict()
            }
        )
        return RepaymentOutcome(allocation=allocation, state=new_state)

    def settlement_quote(
        self,
        state: LoanState,
        fee: Optional[Decimal] = None,
        fee_structure: Optional[FeeStructure] = None
    ) -> SettlementQuote:
        """
        Payoff amount for early settlement

        The early-settlement fee is either given directly or computed from the
        product's fee structure over the outstanding balance.
        """
        if fee is not None and fee_structure is not None:
            raise InvalidChargeError("Pass either a settlement fee or a fee structure, not both")

        outstanding = state.outstanding_balance
        if state.status == LoanStatus.WRITTEN_OFF or outstanding <= self.config.balance_epsilon:
            raise InvalidLoanStateError("Loan has no outstanding balance to settle")

        fee_detail = None
        if fee_structure is not None:
            fee_detail = fee_structure.calculate(outstanding)
            settlement_fee = fee_detail.calculated_amount
        elif fee is not None:
            try:
                settlement_fee = to_decimal(fee)
            except ValueError:
                raise InvalidChargeError(f"Settlement fee must be a number, got {fee!r}") from None
            if settlement_fee < ZERO:
                raise InvalidChargeError("Settlement fee cannot be negative")
        else:
            settlement_fee = ZERO

        return SettlementQuote(
            outstanding_balance=outstanding,
            settlement_fee=settlement_fee,
            payoff_amount=outstanding + settlement_fee,
            fee_detail=fee_detail
        )

    def early_settlement(
        self,
        state: LoanState,
        payment_date: date,
        fee: Optional[Decimal] = None,
        fee_structure: Optional[FeeStructure] = None,
        strategy: Union[str, AllocationStrategy, None] = None,
        method: str = "cash",
        reference: Optional[str] = None
    ) -> SettlementOutcome:
        """
        Close a loan with a single payoff payment

        The settlement fee is booked as an unscheduled fee first, so the
        payoff allocates fully and the loan ends closed.
        """
        quote = self.settlement_quote(state, fee=fee, fee_structure=fee_structure)

        charged = state
        if quote.settlement_fee > ZERO:
            charged = replace(
                state,
                outstanding_balance=state.outstanding_balance + quote.settlement_fee,
                unscheduled_fees_outstanding=state.unscheduled_fees_outstanding + quote.settlement_fee
            )

        payment = Payment(
            amount=quote.payoff_amount,
            payment_date=payment_date,
            method=method,
            reference=reference
        )
        outcome = self.record_payment(charged, payment, strategy)

        log_action(
            self.logger, "info", "Loan settled early",
            action="early_settlement", loan_id=state.loan_id,
            extra={
                "payoff_amount": str(quote.payoff_amount),
                "settlement_fee": str(quote.settlement_fee),
                "status": outcome.state.status.value
            }
        )
        return SettlementOutcome(quote=quote, allocation=outcome.allocation, state=outcome.state)

    def write_off(self, state: LoanState, reason: Optional[str] = None) -> WriteOffResult:
        """
        Cancel the remaining balance without a payment

        Bypasses the allocator. Writing off an already written-off loan
        returns it unchanged with a zero written-off amount.
        """
        if state.status == LoanStatus.WRITTEN_OFF:
            return WriteOffResult(
                written_off_amount=ZERO,
                previous_outstanding=state.outstanding_balance,
                resulting_outstanding_balance=state.outstanding_balance,
                resulting_status=LoanStatus.WRITTEN_OFF,
                state=state,
                reason=reason
            )

        new_state = replace(state, outstanding_balance=ZERO, status=LoanStatus.WRITTEN_OFF)

        log_action(
            self.logger, "warning", "Loan written off",
            action="write_off", loan_id=state.loan_id,
            extra={"amount": str(state.outstanding_balance), "reason": reason}
        )
        return WriteOffResult(
            written_off_amount=state.outstanding_balance,
            previous_outstanding=state.outstanding_balance,
            resulting_outstanding_balance=ZERO,
            resulting_status=LoanStatus.WRITTEN_OFF,
            state=new_state,
            reason=reason
        )

    def loan_status(self, state: LoanState, today: Optional[date] = None) -> LoanStatusReport:
        """Derived status, arrears and timely repayment percentage"""
        return self.evaluator.report(state, today)
