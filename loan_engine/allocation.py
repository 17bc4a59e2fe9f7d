"""
Repayment Allocation Module

Splits a payment across the outstanding penalty, fee, interest and principal
components of a loan according to a configured allocation strategy, and
derives the resulting outstanding balance and loan status.

Nothing here mutates its inputs: every operation returns new values and the
caller decides how and when to persist them.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from enum import Enum
import logging

from .config import EngineConfig, get_config
from .currency import Currency, Money, to_decimal
from .errors import (
    AllocationStrategyUnknownError, InvalidLoanStateError, InvalidPaymentError
)
from .schedule import ScheduleInstallment, installment_status


logger = logging.getLogger(__name__)

ZERO = Decimal('0')
DEFAULT_EPSILON = Decimal('0.0001')


class AllocationComponent(Enum):
    """Outstanding components a payment can be applied to"""
    PENALTY = "penalty"
    FEE = "fee"
    INTEREST = "interest"
    PRINCIPAL = "principal"


class AllocationStrategy(Enum):
    """Fixed priority orders over the four components"""
    PENALTIES_FEES_INTEREST_PRINCIPAL = "penalties_fees_interest_principal"
    INTEREST_PRINCIPAL_PENALTIES_FEES = "interest_principal_penalties_fees"
    INTEREST_PENALTIES_FEES_PRINCIPAL = "interest_penalties_fees_principal"
    PRINCIPAL_INTEREST_FEES_PENALTIES = "principal_interest_fees_penalties"
    INTEREST_FEE_PRINCIPAL_PENALTY = "interest_fee_principal_penalty"  # Default

    @property
    def order(self) -> Tuple[AllocationComponent, ...]:
        return _STRATEGY_ORDERS[self]


_P = AllocationComponent.PENALTY
_F = AllocationComponent.FEE
_I = AllocationComponent.INTEREST
_PR = AllocationComponent.PRINCIPAL

_STRATEGY_ORDERS = {
    AllocationStrategy.PENALTIES_FEES_INTEREST_PRINCIPAL: (_P, _F, _I, _PR),
    AllocationStrategy.INTEREST_PRINCIPAL_PENALTIES_FEES: (_I, _PR, _P, _F),
    AllocationStrategy.INTEREST_PENALTIES_FEES_PRINCIPAL: (_I, _P, _F, _PR),
    AllocationStrategy.PRINCIPAL_INTEREST_FEES_PENALTIES: (_PR, _I, _F, _P),
    AllocationStrategy.INTEREST_FEE_PRINCIPAL_PENALTY: (_I, _F, _PR, _P),
}

DEFAULT_STRATEGY = AllocationStrategy.INTEREST_FEE_PRINCIPAL_PENALTY


class LoanStatus(Enum):
    """Servicing status of a loan"""
    ACTIVE = "active"
    IN_ARREARS = "in_arrears"
    OVERPAID = "overpaid"
    CLOSED = "closed"
    WRITTEN_OFF = "written_off"

    @property
    def category(self) -> str:
        """Display category: active, problem or closed"""
        if self == LoanStatus.IN_ARREARS:
            return "problem"
        if self in (LoanStatus.CLOSED, LoanStatus.WRITTEN_OFF):
            return "closed"
        return "active"


# Statuses used by the presentation layer that map onto servicing statuses
_STATUS_ALIASES = {
    "disbursed": LoanStatus.ACTIVE,
    "activated": LoanStatus.ACTIVE,
    "overdue": LoanStatus.IN_ARREARS,
    "fully_paid": LoanStatus.CLOSED,
}


def parse_status(value: Union[str, LoanStatus, None]) -> LoanStatus:
    """Normalize a stored status string"""
    if isinstance(value, LoanStatus):
        return value
    if not value:
        return LoanStatus.ACTIVE
    normalized = str(value).strip().lower()
    if normalized in _STATUS_ALIASES:
        return _STATUS_ALIASES[normalized]
    try:
        return LoanStatus(normalized)
    except ValueError:
        raise InvalidLoanStateError(f"Unknown loan status: {value!r}") from None


def parse_strategy(code: Union[str, AllocationStrategy, None],
                   strict: bool = False) -> AllocationStrategy:
    """
    Resolve an allocation strategy code

    Args:
        code: Strategy code from the product configuration
        strict: Raise instead of falling back to the default ordering

    Returns:
        AllocationStrategy

    Raises:
        AllocationStrategyUnknownError: If strict and the code is not recognised
    """
    if isinstance(code, AllocationStrategy):
        return code
    if code is None or code == "":
        return DEFAULT_STRATEGY
    try:
        return AllocationStrategy(code)
    except ValueError:
        if strict:
            raise AllocationStrategyUnknownError(code) from None
        logger.warning(
            "Unknown allocation strategy %r, falling back to %s",
            code, DEFAULT_STRATEGY.value
        )
        return DEFAULT_STRATEGY


@dataclass(frozen=True)
class Payment:
    """A recorded repayment. Immutable once recorded."""
    amount: Decimal
    payment_date: date
    method: str = "cash"
    reference: Optional[str] = None

    def __post_init__(self):
        try:
            amount = to_decimal(self.amount)
        except ValueError:
            raise InvalidPaymentError(f"Payment amount must be a number, got {self.amount!r}") from None
        if amount <= ZERO:
            raise InvalidPaymentError("Payment amount must be positive")
        object.__setattr__(self, 'amount', amount)

        if isinstance(self.payment_date, str):
            try:
                object.__setattr__(self, 'payment_date', date.fromisoformat(self.payment_date))
            except ValueError:
                raise InvalidPaymentError(f"Invalid payment date: {self.payment_date!r}") from None
        if not isinstance(self.payment_date, date):
            raise InvalidPaymentError("Payment date is required")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        """Convert a persisted payment record"""
        amount = data.get('payment_amount', data.get('amount'))
        payment_date = data.get('payment_date')
        if amount is None or payment_date is None:
            raise InvalidPaymentError("Payment record needs an amount and a date")
        return cls(
            amount=amount,
            payment_date=payment_date,
            method=data.get('payment_method', data.get('method')) or "cash",
            reference=data.get('reference')
        )


@dataclass(frozen=True)
class LoanBalances:
    """Outstanding amount per component"""
    principal: Decimal
    interest: Decimal
    fees: Decimal
    penalties: Decimal

    @property
    def total(self) -> Decimal:
        return self.principal + self.interest + self.fees + self.penalties

    def cap(self, component: AllocationComponent) -> Decimal:
        """How much of a payment the component can absorb"""
        value = {
            AllocationComponent.PRINCIPAL: self.principal,
            AllocationComponent.INTEREST: self.interest,
            AllocationComponent.FEE: self.fees,
            AllocationComponent.PENALTY: self.penalties,
        }[component]
        return max(ZERO, value)


@dataclass(frozen=True)
class LoanState:
    """Current loan position as supplied by the persistence collaborator"""
    outstanding_balance: Decimal
    installments: Tuple[ScheduleInstallment, ...]
    payments: Tuple[Payment, ...] = ()
    status: LoanStatus = LoanStatus.ACTIVE
    penalties_outstanding: Decimal = ZERO        # No penalty accrual in the engine
    unscheduled_fees_outstanding: Decimal = ZERO  # Fees charged outside the schedule
    loan_id: Optional[str] = None

    def __post_init__(self):
        try:
            for field_name in ('outstanding_balance', 'penalties_outstanding',
                               'unscheduled_fees_outstanding'):
                object.__setattr__(self, field_name, to_decimal(getattr(self, field_name)))
        except ValueError as e:
            raise InvalidLoanStateError(str(e)) from None

        if self.penalties_outstanding < ZERO or self.unscheduled_fees_outstanding < ZERO:
            raise InvalidLoanStateError("Outstanding penalties and fees cannot be negative")

        installments = tuple(sorted(self.installments, key=lambda i: i.sequence_number))
        numbers = [i.sequence_number for i in installments]
        if numbers != list(range(1, len(numbers) + 1)):
            raise InvalidLoanStateError(
                f"Installment numbers must run 1..n without gaps or duplicates, got {numbers}"
            )
        object.__setattr__(self, 'installments', installments)
        object.__setattr__(self, 'payments',
                           tuple(sorted(self.payments, key=lambda p: p.payment_date)))
        object.__setattr__(self, 'status', parse_status(self.status))

    def balances(self) -> LoanBalances:
        """Outstanding components summed over unpaid installments"""
        return LoanBalances(
            principal=sum((i.principal_outstanding for i in self.installments), ZERO),
            interest=sum((i.interest_outstanding for i in self.installments), ZERO),
            fees=sum((i.fee_outstanding for i in self.installments), ZERO)
                 + self.unscheduled_fees_outstanding,
            penalties=self.penalties_outstanding
        )

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), ZERO)

    @classmethod
    def from_schedule(cls, installments: Sequence[ScheduleInstallment],
                      loan_id: Optional[str] = None) -> 'LoanState':
        """State of a freshly disbursed loan: everything scheduled is outstanding"""
        return cls(
            outstanding_balance=sum((i.outstanding_amount for i in installments), ZERO),
            installments=tuple(installments),
            loan_id=loan_id
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanState':
        """
        Convert a loan record with nested schedules and payments

        Accepts ``loan_schedules``/``installments`` and ``loan_payments``/
        ``payments`` keys. A missing outstanding balance is derived from the
        schedule.
        """
        schedule_data = data.get('loan_schedules', data.get('installments')) or []
        payment_data = data.get('loan_payments', data.get('payments')) or []
        installments = tuple(ScheduleInstallment.from_dict(item) for item in schedule_data)
        payments = tuple(Payment.from_dict(item) for item in payment_data)

        outstanding = data.get('outstanding_balance')
        if outstanding is None:
            outstanding = sum((i.outstanding_amount for i in installments), ZERO)

        return cls(
            outstanding_balance=outstanding,
            installments=installments,
            payments=payments,
            status=data.get('status'),
            penalties_outstanding=data.get('penalties_outstanding') or ZERO,
            unscheduled_fees_outstanding=data.get('unscheduled_fees_outstanding') or ZERO,
            loan_id=data.get('id', data.get('loan_id'))
        )


@dataclass(frozen=True)
class AllocationResult:
    """How one payment splits across components and what it does to the loan"""
    amount: Decimal
    principal_applied: Decimal
    interest_applied: Decimal
    fee_applied: Decimal
    penalty_applied: Decimal
    previous_outstanding: Decimal
    resulting_outstanding_balance: Decimal
    resulting_status: LoanStatus
    strategy: AllocationStrategy
    overpaid_amount: Decimal = ZERO

    @property
    def total_applied(self) -> Decimal:
        return self.principal_applied + self.interest_applied + self.fee_applied + self.penalty_applied

    def applied(self, component: AllocationComponent) -> Decimal:
        return {
            AllocationComponent.PRINCIPAL: self.principal_applied,
            AllocationComponent.INTEREST: self.interest_applied,
            AllocationComponent.FEE: self.fee_applied,
            AllocationComponent.PENALTY: self.penalty_applied,
        }[component]

    def describe(self, currency: Currency) -> str:
        """Breakdown for display, e.g. 'Interest: KES 5,000.00, Principal: KES 500.00'"""
        labels = (
            ("Penalties", self.penalty_applied),
            ("Fees", self.fee_applied),
            ("Interest", self.interest_applied),
            ("Principal", self.principal_applied),
        )
        parts = [
            f"{label}: {Money(value, currency).to_string()}"
            for label, value in labels if value > ZERO
        ]
        return ", ".join(parts) if parts else "No allocation"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'amount': str(self.amount),
            'principal_applied': str(self.principal_applied),
            'interest_applied': str(self.interest_applied),
            'fee_applied': str(self.fee_applied),
            'penalty_applied': str(self.penalty_applied),
            'previous_outstanding': str(self.previous_outstanding),
            'resulting_outstanding_balance': str(self.resulting_outstanding_balance),
            'resulting_status': self.resulting_status.value,
            'overpaid_amount': str(self.overpaid_amount),
            'strategy': self.strategy.value
        }


def resulting_status(outstanding: Decimal, epsilon: Decimal = DEFAULT_EPSILON) -> LoanStatus:
    """Status implied by an outstanding balance after a payment"""
    if outstanding < -epsilon:
        return LoanStatus.OVERPAID
    if outstanding <= epsilon:
        return LoanStatus.CLOSED
    return LoanStatus.ACTIVE


def apply_payment(
    state: LoanState,
    amount: Decimal,
    strategy: Union[str, AllocationStrategy, None] = None,
    epsilon: Decimal = DEFAULT_EPSILON
) -> AllocationResult:
    """
    Allocate a payment across outstanding components

    Each component in strategy order takes min(remaining, outstanding). Any
    amount left once every component is exhausted is forced into principal,
    which drives the outstanding balance negative and marks the loan overpaid.

    Args:
        state: Current loan state
        amount: Payment amount, must be positive
        strategy: Strategy or code; unknown codes fall back to the default order
        epsilon: Tolerance for the closed / overpaid decision

    Returns:
        AllocationResult
    """
    try:
        amount = to_decimal(amount)
    except ValueError:
        raise InvalidPaymentError(f"Payment amount must be a number, got {amount!r}") from None
    if amount <= ZERO:
        raise InvalidPaymentError("Payment amount must be positive")

    strategy = parse_strategy(strategy)
    balances = state.balances()

    applied = {component: ZERO for component in AllocationComponent}
    remaining = amount
    for component in strategy.order:
        if remaining <= ZERO:
            break
        portion = min(remaining, balances.cap(component))
        applied[component] += portion
        remaining -= portion

    if remaining > ZERO:
        applied[AllocationComponent.PRINCIPAL] += remaining

    new_outstanding = state.outstanding_balance - amount
    status = resulting_status(new_outstanding, epsilon)
    overpaid = -new_outstanding if status == LoanStatus.OVERPAID else ZERO

    return AllocationResult(
        amount=amount,
        principal_applied=applied[AllocationComponent.PRINCIPAL],
        interest_applied=applied[AllocationComponent.INTEREST],
        fee_applied=applied[AllocationComponent.FEE],
        penalty_applied=applied[AllocationComponent.PENALTY],
        previous_outstanding=state.outstanding_balance,
        resulting_outstanding_balance=new_outstanding,
        resulting_status=status,
        strategy=strategy,
        overpaid_amount=overpaid
    )


def allocate_to_installments(
    installments: Sequence[ScheduleInstallment],
    result: AllocationResult,
    epsilon: Decimal = DEFAULT_EPSILON
) -> List[ScheduleInstallment]:
    """
    Spread an allocation onto installments in ascending sequence order

    Principal beyond what the schedule still owes (overpayment) and fees
    beyond scheduled fees are not placed on any installment.

    Returns:
        New installments with updated paid-to-date amounts and status
    """
    remaining = {
        'principal': result.principal_applied,
        'interest': result.interest_applied,
        'fee': result.fee_applied,
    }

    updated = []
    for installment in sorted(installments, key=lambda i: i.sequence_number):
        changes = {}
        for component in ('interest', 'fee', 'principal'):
            owed = getattr(installment, f'{component}_outstanding')
            portion = min(remaining[component], owed)
            if portion > ZERO:
                changes[f'{component}_paid'] = getattr(installment, f'{component}_paid') + portion
                remaining[component] -= portion

        if changes:
            installment = replace(installment, **changes)
            installment = replace(installment, payment_status=installment_status(installment, epsilon))
        updated.append(installment)

    return updated


def validate_allocation(result: AllocationResult, balances: LoanBalances) -> List[str]:
    """
    Check an allocation against the balances it was computed from

    Returns:
        List of violations, empty when the allocation is consistent
    """
    errors = []

    overpayment = max(ZERO, result.amount - balances.total)
    if result.principal_applied > balances.principal + overpayment:
        errors.append("Principal allocation exceeds outstanding principal")
    if result.interest_applied > balances.interest:
        errors.append("Interest allocation exceeds unpaid interest")
    if result.fee_applied > balances.fees:
        errors.append("Fee allocation exceeds unpaid fees")
    if result.penalty_applied > balances.penalties:
        errors.append("Penalty allocation exceeds unpaid penalties")

    for component in AllocationComponent:
        if result.applied(component) < ZERO:
            errors.append(f"{component.value} allocation cannot be negative")

    if result.total_applied != result.amount:
        errors.append("Allocated components do not add up to the payment amount")

    return errors


class RepaymentAllocator:
    """
    Applies payments using the configured default strategy and tolerances
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_config()
        self.logger = logging.getLogger("loan_engine.allocation")

    def resolve_strategy(self, code: Union[str, AllocationStrategy, None]) -> AllocationStrategy:
        """Resolve a product's strategy code, using the configured default when unset"""
        if code is None or code == "":
            code = self.config.default_allocation_strategy
        return parse_strategy(code, strict=self.config.strict_strategy_codes)

    def apply(
        self,
        state: LoanState,
        amount: Decimal,
        strategy: Union[str, AllocationStrategy, None] = None
    ) -> AllocationResult:
        """Allocate a payment against a loan state"""
        result = apply_payment(
            state, amount, self.resolve_strategy(strategy), self.config.balance_epsilon
        )
        self.logger.debug(
            "Allocated %s with %s: principal=%s interest=%s fee=%s penalty=%s status=%s",
            result.amount, result.strategy.value, result.principal_applied,
            result.interest_applied, result.fee_applied, result.penalty_applied,
            result.resulting_status.value
        )
        return result
