"""
Schedule Module

Generates loan repayment schedules: flat-rate and reducing-balance interest,
due dates by repayment frequency, one-off and recurring charges.

All components are computed at full Decimal precision. The final installment
absorbs the principal and fee residue so that the schedule sums exactly to
the original principal and charge totals.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence
from enum import Enum
import calendar
import logging

from .config import EngineConfig, get_config
from .currency import Currency, quantize_amount, to_decimal
from .errors import InvalidTermsError, InvalidChargeError, InvalidLoanStateError


logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')
MONTHS_PER_YEAR = Decimal('12')


class RepaymentFrequency(Enum):
    """Repayment frequency options"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class CalculationMethod(Enum):
    """Interest calculation methods"""
    FLAT = "flat"                          # Interest on original principal, split evenly
    REDUCING_BALANCE = "reducing_balance"  # Interest on outstanding principal each period


class AmortizationMethod(Enum):
    """How reducing-balance principal is spread over installments"""
    EQUAL_INSTALLMENTS = "equal_installments"  # Level total payment (annuity)
    EQUAL_PRINCIPAL = "equal_principal"        # Level principal, falling totals


class InstallmentStatus(Enum):
    """Payment status of a schedule installment"""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


def _coerce_enum(enum_cls, value, error_cls, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise error_cls(f"Unknown {label}: {value!r}") from None


def _coerce_decimal(value, error_cls, label: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        raise error_cls(f"{label} must be a number, got {value!r}") from None


def _coerce_date(value, error_cls, label: str) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise error_cls(f"{label} must be an ISO date, got {value!r}") from None


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms. Immutable: changing terms means generating a new schedule."""
    principal: Decimal
    annual_interest_rate: Decimal          # Percent, e.g. 12 for 12%
    term: int                              # Duration in frequency units
    installment_count: int
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    calculation_method: CalculationMethod = CalculationMethod.REDUCING_BALANCE
    first_repayment_date: Optional[date] = None
    amortization: AmortizationMethod = AmortizationMethod.EQUAL_INSTALLMENTS
    grace_periods: int = 0                 # Leading installments with no principal due

    def __post_init__(self):
        object.__setattr__(self, 'principal',
                           _coerce_decimal(self.principal, InvalidTermsError, "Principal"))
        object.__setattr__(self, 'annual_interest_rate',
                           _coerce_decimal(self.annual_interest_rate, InvalidTermsError, "Interest rate"))
        object.__setattr__(self, 'repayment_frequency',
                           _coerce_enum(RepaymentFrequency, self.repayment_frequency,
                                        InvalidTermsError, "repayment frequency"))
        object.__setattr__(self, 'calculation_method',
                           _coerce_enum(CalculationMethod, self.calculation_method,
                                        InvalidTermsError, "calculation method"))
        object.__setattr__(self, 'first_repayment_date',
                           _coerce_date(self.first_repayment_date, InvalidTermsError,
                                        "First repayment date"))
        object.__setattr__(self, 'amortization',
                           _coerce_enum(AmortizationMethod, self.amortization,
                                        InvalidTermsError, "amortization method"))

        for field_name in ('term', 'installment_count', 'grace_periods'):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidTermsError(f"{field_name} must be an integer, got {value!r}")

        if self.principal <= ZERO:
            raise InvalidTermsError("Loan amount must be positive")
        if self.installment_count <= 0:
            raise InvalidTermsError("Number of installments must be at least 1")
        if self.term <= 0:
            raise InvalidTermsError("Loan term must be positive")
        if self.annual_interest_rate < ZERO:
            raise InvalidTermsError("Interest rate cannot be negative")
        if self.grace_periods < 0:
            raise InvalidTermsError("Grace periods cannot be negative")
        if self.grace_periods >= self.installment_count:
            raise InvalidTermsError("Grace periods must leave at least one repaying installment")

    @property
    def repaying_installments(self) -> int:
        """Installments that carry principal"""
        return self.installment_count - self.grace_periods

    @property
    def monthly_rate(self) -> Decimal:
        """Periodic rate used by reducing-balance schedules, always monthly"""
        return self.annual_interest_rate / HUNDRED / MONTHS_PER_YEAR

    @property
    def flat_total_interest(self) -> Decimal:
        """Interest over the whole nominal term on the original principal"""
        return self.principal * self.annual_interest_rate * Decimal(self.term) / HUNDRED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanTerms':
        """Build terms from a collaborator payload, rejecting missing keys"""
        required = ('principal', 'annual_interest_rate', 'term', 'installment_count')
        missing = [key for key in required if data.get(key) is None]
        if missing:
            raise InvalidTermsError(f"Missing loan terms: {', '.join(missing)}")

        return cls(
            principal=data['principal'],
            annual_interest_rate=data['annual_interest_rate'],
            term=data['term'],
            installment_count=data['installment_count'],
            repayment_frequency=data.get('repayment_frequency', RepaymentFrequency.MONTHLY),
            calculation_method=data.get('calculation_method', CalculationMethod.REDUCING_BALANCE),
            first_repayment_date=data.get('first_repayment_date'),
            amortization=data.get('amortization') or AmortizationMethod.EQUAL_INSTALLMENTS,
            grace_periods=data.get('grace_periods') or 0
        )


@dataclass(frozen=True)
class ChargeSpec:
    """A charge to attach to the schedule"""
    name: str
    amount: Decimal
    recurring: bool = False             # Split evenly over all installments
    due_date: Optional[date] = None     # One-off charges only; defaults to installment 1

    def __post_init__(self):
        amount = _coerce_decimal(self.amount, InvalidChargeError, f"Charge {self.name!r} amount")
        if amount < ZERO:
            raise InvalidChargeError(f"Charge {self.name!r} cannot be negative")
        object.__setattr__(self, 'amount', amount)
        object.__setattr__(self, 'due_date',
                           _coerce_date(self.due_date, InvalidChargeError, "Charge due date"))


@dataclass(frozen=True)
class ScheduleInstallment:
    """Single installment in a repayment schedule"""
    sequence_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    fee_amount: Decimal
    outstanding_principal: Decimal      # Principal still owed after this installment
    principal_paid: Decimal = ZERO
    interest_paid: Decimal = ZERO
    fee_paid: Decimal = ZERO
    payment_status: InstallmentStatus = InstallmentStatus.UNPAID

    @property
    def total_amount(self) -> Decimal:
        return self.principal_amount + self.interest_amount + self.fee_amount

    @property
    def paid_amount(self) -> Decimal:
        return self.principal_paid + self.interest_paid + self.fee_paid

    @property
    def principal_outstanding(self) -> Decimal:
        return max(ZERO, self.principal_amount - self.principal_paid)

    @property
    def interest_outstanding(self) -> Decimal:
        return max(ZERO, self.interest_amount - self.interest_paid)

    @property
    def fee_outstanding(self) -> Decimal:
        return max(ZERO, self.fee_amount - self.fee_paid)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.principal_outstanding + self.interest_outstanding + self.fee_outstanding

    @property
    def is_paid(self) -> bool:
        return self.payment_status == InstallmentStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persistence collaborator's record shape"""
        return {
            'installment_number': self.sequence_number,
            'due_date': self.due_date.isoformat(),
            'principal_amount': str(self.principal_amount),
            'interest_amount': str(self.interest_amount),
            'fee_amount': str(self.fee_amount),
            'total_amount': str(self.total_amount),
            'outstanding_principal': str(self.outstanding_principal),
            'principal_paid': str(self.principal_paid),
            'interest_paid': str(self.interest_paid),
            'fee_paid': str(self.fee_paid),
            'paid_amount': str(self.paid_amount),
            'outstanding_amount': str(self.outstanding_amount),
            'payment_status': self.payment_status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleInstallment':
        """
        Convert a persisted installment record

        Records that only carry a lump ``paid_amount`` have it spread over
        interest, then fee, then principal.
        """
        sequence_number = data.get('installment_number', data.get('sequence_number'))
        if sequence_number is None or data.get('due_date') is None:
            raise InvalidLoanStateError("Installment record needs a number and a due date")

        def amount(key: str) -> Decimal:
            value = _coerce_decimal(data.get(key) or 0, InvalidLoanStateError, key)
            if value < ZERO:
                raise InvalidLoanStateError(f"Installment {sequence_number}: {key} cannot be negative")
            return value

        principal = amount('principal_amount')
        interest = amount('interest_amount')
        fee = amount('fee_amount')

        if any(key in data for key in ('principal_paid', 'interest_paid', 'fee_paid')):
            principal_paid = amount('principal_paid')
            interest_paid = amount('interest_paid')
            fee_paid = amount('fee_paid')
        else:
            remaining = amount('paid_amount')
            interest_paid = min(remaining, interest)
            remaining -= interest_paid
            fee_paid = min(remaining, fee)
            remaining -= fee_paid
            principal_paid = min(remaining, principal)

        installment = cls(
            sequence_number=int(sequence_number),
            due_date=_coerce_date(data['due_date'], InvalidLoanStateError, "due_date"),
            principal_amount=principal,
            interest_amount=interest,
            fee_amount=fee,
            outstanding_principal=amount('outstanding_principal'),
            principal_paid=principal_paid,
            interest_paid=interest_paid,
            fee_paid=fee_paid
        )

        status = data.get('payment_status')
        if status:
            status = _coerce_enum(InstallmentStatus, status, InvalidLoanStateError,
                                  "installment payment status")
        else:
            status = installment_status(installment)
        return replace(installment, payment_status=status)


@dataclass(frozen=True)
class ScheduleSummary:
    """Totals of a generated schedule"""
    installment_count: int
    total_principal: Decimal
    total_interest: Decimal
    total_fees: Decimal
    total_amount: Decimal
    installment_amount: Decimal         # Principal + interest of the first installment
    first_due_date: date
    last_due_date: date


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_due_date(start_date: date, frequency: RepaymentFrequency, periods: int = 1) -> date:
    """Date ``periods`` repayment periods after ``start_date``"""
    if frequency == RepaymentFrequency.DAILY:
        return start_date + timedelta(days=periods)
    elif frequency == RepaymentFrequency.WEEKLY:
        return start_date + timedelta(weeks=periods)
    elif frequency == RepaymentFrequency.MONTHLY:
        return add_months(start_date, periods)
    elif frequency == RepaymentFrequency.QUARTERLY:
        return add_months(start_date, 3 * periods)
    else:
        raise InvalidTermsError(f"Unsupported repayment frequency: {frequency}")


def installment_status(installment: ScheduleInstallment,
                       epsilon: Decimal = Decimal('0.0001')) -> InstallmentStatus:
    """Payment status implied by an installment's paid-to-date amounts"""
    if installment.outstanding_amount <= epsilon:
        return InstallmentStatus.PAID
    if installment.paid_amount > ZERO:
        return InstallmentStatus.PARTIALLY_PAID
    return InstallmentStatus.UNPAID


def _flat_components(terms: LoanTerms) -> List[tuple]:
    n = terms.installment_count
    repaying = terms.repaying_installments
    total_interest = terms.flat_total_interest
    interest = total_interest / Decimal(n)
    # Level total over the installments that repay principal
    level_payment = (terms.principal + interest * repaying) / Decimal(repaying)
    level_principal = level_payment - interest

    components = []
    allocated = ZERO
    for number in range(1, n + 1):
        if number <= terms.grace_periods:
            principal = ZERO
        elif number == n:
            principal = terms.principal - allocated
        else:
            principal = level_principal
        allocated += principal
        components.append((principal, interest))
    return components


def _reducing_balance_components(terms: LoanTerms) -> List[tuple]:
    n = terms.installment_count
    repaying = terms.repaying_installments
    rate = terms.monthly_rate

    if terms.amortization == AmortizationMethod.EQUAL_PRINCIPAL or rate == ZERO:
        payment = None
        level_principal = terms.principal / Decimal(repaying)
    else:
        # payment = P * r * (1+r)^n / ((1+r)^n - 1)
        factor = (Decimal('1') + rate) ** repaying
        payment = terms.principal * rate * factor / (factor - Decimal('1'))

    components = []
    balance = terms.principal
    for number in range(1, n + 1):
        interest = balance * rate
        if number <= terms.grace_periods:
            principal = ZERO
        elif number == n:
            principal = balance
        elif payment is None:
            principal = level_principal
        else:
            principal = payment - interest
        balance -= principal
        components.append((principal, interest))
    return components


def _fee_components(charges: Sequence[ChargeSpec], due_dates: List[date]) -> List[Decimal]:
    n = len(due_dates)
    fees = [ZERO] * n

    for charge in charges:
        if charge.recurring:
            share = charge.amount / Decimal(n)
            for index in range(n - 1):
                fees[index] += share
            fees[-1] += charge.amount - share * (n - 1)
        else:
            index = 0
            if charge.due_date is not None:
                index = next(
                    (i for i, due in enumerate(due_dates) if due >= charge.due_date),
                    n - 1
                )
            fees[index] += charge.amount
    return fees


def generate_schedule(
    terms: LoanTerms,
    charges: Sequence[ChargeSpec] = (),
    today: Optional[date] = None
) -> List[ScheduleInstallment]:
    """
    Generate the repayment schedule for a loan

    Args:
        terms: Validated loan terms
        charges: One-off and recurring charges to attach
        today: Reference date used when the terms carry no first repayment date

    Returns:
        Installments in ascending sequence order
    """
    if not isinstance(terms, LoanTerms):
        raise InvalidTermsError(f"Expected LoanTerms, got {type(terms).__name__}")

    first_date = terms.first_repayment_date
    if first_date is None:
        first_date = next_due_date(today or date.today(), terms.repayment_frequency)

    if terms.calculation_method == CalculationMethod.FLAT:
        components = _flat_components(terms)
    else:
        components = _reducing_balance_components(terms)

    due_dates = [
        next_due_date(first_date, terms.repayment_frequency, number)
        for number in range(terms.installment_count)
    ]
    fees = _fee_components(charges, due_dates)

    schedule = []
    outstanding = terms.principal
    for index, (principal, interest) in enumerate(components):
        outstanding -= principal
        schedule.append(ScheduleInstallment(
            sequence_number=index + 1,
            due_date=due_dates[index],
            principal_amount=principal,
            interest_amount=interest,
            fee_amount=fees[index],
            outstanding_principal=outstanding
        ))

    logger.debug(
        "Generated %s schedule: %d installments from %s",
        terms.calculation_method.value, len(schedule), first_date.isoformat()
    )
    return schedule


def summarize_schedule(installments: Sequence[ScheduleInstallment]) -> ScheduleSummary:
    """Totals for a schedule"""
    if not installments:
        raise InvalidLoanStateError("Cannot summarize an empty schedule")

    first = installments[0]
    return ScheduleSummary(
        installment_count=len(installments),
        total_principal=sum((i.principal_amount for i in installments), ZERO),
        total_interest=sum((i.interest_amount for i in installments), ZERO),
        total_fees=sum((i.fee_amount for i in installments), ZERO),
        total_amount=sum((i.total_amount for i in installments), ZERO),
        installment_amount=first.principal_amount + first.interest_amount,
        first_due_date=first.due_date,
        last_due_date=installments[-1].due_date
    )


def round_schedule(
    installments: Sequence[ScheduleInstallment],
    currency: Currency
) -> List[ScheduleInstallment]:
    """
    Round every component to the currency's minor unit for persistence

    The last installment takes the principal and fee rounding residue, so the
    rounded principals still sum to the original principal exactly.
    """
    if not installments:
        return []

    total_principal = quantize_amount(sum((i.principal_amount for i in installments), ZERO), currency)
    total_fees = quantize_amount(sum((i.fee_amount for i in installments), ZERO), currency)

    rounded = []
    principal_so_far = ZERO
    fees_so_far = ZERO
    last_index = len(installments) - 1
    for index, installment in enumerate(installments):
        if index == last_index:
            principal = total_principal - principal_so_far
            fee = total_fees - fees_so_far
        else:
            principal = quantize_amount(installment.principal_amount, currency)
            fee = quantize_amount(installment.fee_amount, currency)
        principal_so_far += principal
        fees_so_far += fee

        rounded.append(replace(
            installment,
            principal_amount=principal,
            interest_amount=quantize_amount(installment.interest_amount, currency),
            fee_amount=fee,
            outstanding_principal=total_principal - principal_so_far,
            principal_paid=quantize_amount(installment.principal_paid, currency),
            interest_paid=quantize_amount(installment.interest_paid, currency),
            fee_paid=quantize_amount(installment.fee_paid, currency)
        ))
    return rounded


class ScheduleGenerator:
    """
    Schedule generation entry point for callers previewing or creating loans
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 currency: Optional[Currency] = None):
        self.config = config or get_config()
        self.currency = currency or Currency[self.config.default_currency]
        self.logger = logging.getLogger("loan_engine.schedule")

    def generate(
        self,
        terms: LoanTerms,
        charges: Sequence[ChargeSpec] = (),
        today: Optional[date] = None
    ) -> List[ScheduleInstallment]:
        """Full-precision schedule"""
        return generate_schedule(terms, charges, today)

    def preview(
        self,
        terms: LoanTerms,
        charges: Sequence[ChargeSpec] = (),
        today: Optional[date] = None
    ) -> tuple:
        """
        Rounded schedule plus summary, as shown before a loan is submitted

        Returns:
            Tuple of (rounded installments, ScheduleSummary)
        """
        schedule = round_schedule(generate_schedule(terms, charges, today), self.currency)
        summary = summarize_schedule(schedule)
        self.logger.info(
            "Schedule preview: principal=%s installments=%d total=%s",
            terms.principal, summary.installment_count, summary.total_amount
        )
        return schedule, summary
