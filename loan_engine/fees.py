"""
Fee Module

Product fee definitions with fixed or percentage calculation and minimum /
maximum enforcement. Fees are turned into schedule charges or used as
early-settlement fee lookups; the engine itself never fetches fee tables.
"""

from decimal import Decimal
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence
from enum import Enum

from .currency import Currency, Money
from .errors import InvalidChargeError
from .schedule import ChargeSpec, _coerce_decimal, _coerce_enum


class FeeCalculationType(Enum):
    """How a fee amount is derived"""
    FIXED = "fixed"
    FLAT = "flat"              # Same as fixed
    PERCENTAGE = "percentage"  # Percent of a base amount


class ChargeTimeType(Enum):
    """When a fee becomes due"""
    DISBURSEMENT = "disbursement"
    SPECIFIED_DUE_DATE = "specified_due_date"
    INSTALLMENT = "installment"
    EARLY_SETTLEMENT = "early_settlement"


class AppliedLimit(Enum):
    MINIMUM = "minimum"
    MAXIMUM = "maximum"


@dataclass(frozen=True)
class CalculatedFee:
    """Result of evaluating a fee structure against a base amount"""
    name: str
    calculation_type: FeeCalculationType
    original_amount: Decimal
    calculated_amount: Decimal
    base_amount: Optional[Decimal]
    applied_limit: Optional[AppliedLimit] = None

    def display(self, currency: Currency = Currency.KES) -> str:
        """
        Fee as shown next to a loan application

        Examples: "KES 500.00", "2% = KES 200.00", "1% (Min applied: KES 250.00)"
        """
        amount = Money(self.calculated_amount, currency).to_string()
        if self.calculation_type == FeeCalculationType.PERCENTAGE:
            text = f"{self.original_amount.normalize():f}%"
        else:
            text = amount

        if self.applied_limit == AppliedLimit.MINIMUM:
            return f"{text} (Min applied: {amount})"
        if self.applied_limit == AppliedLimit.MAXIMUM:
            return f"{text} (Max applied: {amount})"
        if self.calculation_type == FeeCalculationType.PERCENTAGE:
            return f"{text} = {amount}"
        return text


@dataclass(frozen=True)
class FeeStructure:
    """Fee configuration supplied by the product setup"""
    name: str
    calculation_type: FeeCalculationType
    amount: Decimal
    charge_time_type: ChargeTimeType = ChargeTimeType.DISBURSEMENT
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, 'calculation_type',
                           _coerce_enum(FeeCalculationType, self.calculation_type,
                                        InvalidChargeError, "fee calculation type"))
        object.__setattr__(self, 'charge_time_type',
                           _coerce_enum(ChargeTimeType, self.charge_time_type,
                                        InvalidChargeError, "charge time type"))

        for field_name in ('amount', 'min_amount', 'max_amount'):
            value = getattr(self, field_name)
            if value is None:
                continue
            value = _coerce_decimal(value, InvalidChargeError, f"Fee {self.name!r} {field_name}")
            if value < 0:
                raise InvalidChargeError(f"Fee {self.name!r}: {field_name} cannot be negative")
            object.__setattr__(self, field_name, value)

        if (self.min_amount is not None and self.max_amount is not None
                and self.min_amount > self.max_amount):
            raise InvalidChargeError(f"Fee {self.name!r}: min_amount exceeds max_amount")

    @property
    def is_percentage(self) -> bool:
        return self.calculation_type == FeeCalculationType.PERCENTAGE

    def calculate(self, base_amount: Optional[Decimal] = None) -> CalculatedFee:
        """
        Calculate the fee amount with min/max enforcement

        Args:
            base_amount: Amount percentage fees are computed on

        Returns:
            CalculatedFee with the final amount and any limit applied

        Raises:
            InvalidChargeError: If a percentage fee has no positive base amount
        """
        if base_amount is not None:
            base_amount = _coerce_decimal(base_amount, InvalidChargeError,
                                          f"Fee {self.name!r} base amount")

        if self.is_percentage:
            if base_amount is None or base_amount <= 0:
                raise InvalidChargeError(
                    f"Percentage fee {self.name!r} requires a positive base amount"
                )
            calculated = base_amount * self.amount / Decimal('100')
        else:
            calculated = self.amount

        applied_limit = None
        if self.min_amount and calculated < self.min_amount:
            calculated = self.min_amount
            applied_limit = AppliedLimit.MINIMUM
        if self.max_amount and calculated > self.max_amount:
            calculated = self.max_amount
            applied_limit = AppliedLimit.MAXIMUM

        return CalculatedFee(
            name=self.name,
            calculation_type=self.calculation_type,
            original_amount=self.amount,
            calculated_amount=calculated,
            base_amount=base_amount,
            applied_limit=applied_limit
        )

    def to_charge(self, base_amount: Optional[Decimal] = None,
                  due_date: Optional[date] = None) -> ChargeSpec:
        """Convert into a schedule charge; installment fees become recurring charges"""
        if self.charge_time_type == ChargeTimeType.EARLY_SETTLEMENT:
            raise InvalidChargeError(
                f"Fee {self.name!r} is an early-settlement fee and cannot be scheduled"
            )
        if self.charge_time_type == ChargeTimeType.SPECIFIED_DUE_DATE and due_date is None:
            raise InvalidChargeError(f"Fee {self.name!r} requires a due date")

        return ChargeSpec(
            name=self.name,
            amount=self.calculate(base_amount).calculated_amount,
            recurring=self.charge_time_type == ChargeTimeType.INSTALLMENT,
            due_date=due_date
        )


def fee_warning_message(calculated_fees: Sequence[CalculatedFee]) -> Optional[str]:
    """Note listing the fees clamped to their minimum or maximum, None when none were"""
    minimum = [fee.name for fee in calculated_fees if fee.applied_limit == AppliedLimit.MINIMUM]
    maximum = [fee.name for fee in calculated_fees if fee.applied_limit == AppliedLimit.MAXIMUM]

    parts = []
    if minimum:
        parts.append(f"Minimum charge limits applied to: {', '.join(minimum)}")
    if maximum:
        parts.append(f"Maximum charge limits applied to: {', '.join(maximum)}")
    return ". ".join(parts) if parts else None


@dataclass(frozen=True)
class FeeBreakdown:
    """Totals for a set of fees evaluated against one base amount"""
    total: Decimal
    fees: List[CalculatedFee]

    @property
    def has_limits_applied(self) -> bool:
        return any(fee.applied_limit is not None for fee in self.fees)

    @property
    def warning_message(self) -> Optional[str]:
        return fee_warning_message(self.fees)


def calculate_total_fees(
    fee_structures: Sequence[FeeStructure],
    base_amount: Optional[Decimal] = None
) -> FeeBreakdown:
    """
    Calculate total fees for a set of fee structures

    Returns:
        FeeBreakdown with the total and the per-fee results
    """
    calculated = [fee.calculate(base_amount) for fee in fee_structures]
    total = sum((fee.calculated_amount for fee in calculated), Decimal('0'))
    return FeeBreakdown(total=total, fees=calculated)
