"""
Loan Status Module

Derived, read-only views of a loan: arrears detection, timely repayment
percentage (TRP) and the loan's derived servicing status. Nothing here is
cached; every value is recomputed from the state passed in.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import logging

from .allocation import DEFAULT_EPSILON, LoanBalances, LoanState, LoanStatus, Payment
from .config import EngineConfig, get_config
from .schedule import ScheduleInstallment


ZERO = Decimal('0')
DEFAULT_TIMELY_EPSILON = Decimal('0.01')


@dataclass(frozen=True)
class ArrearsInfo:
    """Overdue position of a loan as of a given date"""
    in_arrears: bool
    days_in_arrears: int = 0
    overdue_installments: Tuple[int, ...] = ()
    overdue_amount: Decimal = ZERO
    oldest_due_date: Optional[date] = None


@dataclass(frozen=True)
class DerivedStatus:
    status: LoanStatus
    days_in_arrears: int = 0
    overpaid_amount: Decimal = ZERO


@dataclass(frozen=True)
class LoanStatusReport:
    """Everything the presentation layer shows about a loan's standing"""
    as_of: date
    derived: DerivedStatus
    arrears: ArrearsInfo
    timely_repayment_percentage: int
    balances: LoanBalances
    outstanding_balance: Decimal
    total_paid: Decimal


def check_arrears(installments: Sequence[ScheduleInstallment], today: date) -> ArrearsInfo:
    """
    Find installments whose due date has passed without full payment

    Days in arrears count from the earliest such due date to ``today``.
    """
    overdue = [
        installment
        for installment in sorted(installments, key=lambda i: i.sequence_number)
        if installment.due_date < today and not installment.is_paid
    ]
    if not overdue:
        return ArrearsInfo(in_arrears=False)

    oldest = min(installment.due_date for installment in overdue)
    return ArrearsInfo(
        in_arrears=True,
        days_in_arrears=(today - oldest).days,
        overdue_installments=tuple(i.sequence_number for i in overdue),
        overdue_amount=sum((i.outstanding_amount for i in overdue), ZERO),
        oldest_due_date=oldest
    )


def timely_repayment_percentage(
    installments: Sequence[ScheduleInstallment],
    payments: Sequence[Payment],
    today: date,
    epsilon: Decimal = DEFAULT_TIMELY_EPSILON
) -> int:
    """
    Percentage of due installments that were covered on time

    An installment due on or before ``today`` is timely when cumulative
    payments made by its due date reach the cumulative amount scheduled up to
    and including it. Returns 100 when nothing is due yet.
    """
    due = [
        installment
        for installment in sorted(installments, key=lambda i: i.sequence_number)
        if installment.due_date <= today
    ]
    if not due:
        return 100

    ordered_payments = sorted(payments, key=lambda p: p.payment_date)

    timely = 0
    required = ZERO
    for installment in due:
        required += installment.total_amount
        paid_by_due_date = ZERO
        for payment in ordered_payments:
            if payment.payment_date > installment.due_date:
                break
            paid_by_due_date += payment.amount
        if paid_by_due_date >= required - epsilon:
            timely += 1

    percentage = Decimal(timely * 100) / Decimal(len(due))
    return int(percentage.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def derive_status(state: LoanState, today: date,
                  epsilon: Decimal = DEFAULT_EPSILON) -> DerivedStatus:
    """
    Derived status of a loan

    Written-off loans stay written off. Otherwise a negative balance means
    overpaid, a zero balance means closed, and an open balance is in arrears
    when an installment is overdue, active when not.
    """
    if state.status == LoanStatus.WRITTEN_OFF:
        return DerivedStatus(status=LoanStatus.WRITTEN_OFF)

    outstanding = state.outstanding_balance
    if outstanding < -epsilon:
        return DerivedStatus(status=LoanStatus.OVERPAID, overpaid_amount=-outstanding)
    if outstanding <= epsilon:
        return DerivedStatus(status=LoanStatus.CLOSED)

    arrears = check_arrears(state.installments, today)
    if arrears.in_arrears:
        return DerivedStatus(status=LoanStatus.IN_ARREARS, days_in_arrears=arrears.days_in_arrears)
    return DerivedStatus(status=LoanStatus.ACTIVE)


class LoanStatusEvaluator:
    """
    Evaluates loan standing with the configured tolerances
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_config()
        self.logger = logging.getLogger("loan_engine.status")

    def arrears(self, state: LoanState, today: Optional[date] = None) -> ArrearsInfo:
        return check_arrears(state.installments, today or date.today())

    def timely_repayment_percentage(self, state: LoanState, today: Optional[date] = None) -> int:
        return timely_repayment_percentage(
            state.installments, state.payments, today or date.today(),
            self.config.timely_epsilon
        )

    def derive(self, state: LoanState, today: Optional[date] = None) -> DerivedStatus:
        return derive_status(state, today or date.today(), self.config.balance_epsilon)

    def report(self, state: LoanState, today: Optional[date] = None) -> LoanStatusReport:
        """
        Full status report for a loan

        Args:
            state: Current loan state
            today: As-of date, defaults to the system date

        Returns:
            LoanStatusReport
        """
        today = today or date.today()
        derived = self.derive(state, today)
        report = LoanStatusReport(
            as_of=today,
            derived=derived,
            arrears=self.arrears(state, today),
            timely_repayment_percentage=self.timely_repayment_percentage(state, today),
            balances=state.balances(),
            outstanding_balance=state.outstanding_balance,
            total_paid=state.total_paid
        )
        self.logger.debug(
            "Loan %s status as of %s: %s (TRP %d%%)",
            state.loan_id or "-", today.isoformat(), derived.status.value,
            report.timely_repayment_percentage
        )
        return report
