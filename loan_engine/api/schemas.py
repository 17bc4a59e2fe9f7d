"""
Pydantic schemas for API requests and responses

Amounts travel as decimal strings so no value ever passes through float.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..allocation import AllocationResult, LoanState
from ..currency import Money, Currency
from ..fees import FeeStructure
from ..schedule import ChargeSpec, LoanTerms, ScheduleInstallment


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    return date.fromisoformat(value)


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (KES, UGX, etc.)")

    def to_money(self) -> Money:
        return Money(Decimal(self.amount), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class LoanTermsModel(BaseModel):
    principal: str
    annual_interest_rate: str = Field(..., description="Annual rate in percent, e.g. '12'")
    term: int
    installment_count: int
    repayment_frequency: str = Field("monthly", description="daily, weekly, monthly or quarterly")
    calculation_method: str = Field("reducing_balance", description="flat or reducing_balance")
    first_repayment_date: Optional[str] = None  # ISO date string
    amortization: str = Field("equal_installments", description="equal_installments or equal_principal")
    grace_periods: int = Field(0, description="Leading installments with no principal due")

    def to_loan_terms(self) -> LoanTerms:
        return LoanTerms.from_dict(self.model_dump())


class ChargeModel(BaseModel):
    name: str
    amount: str
    recurring: bool = False
    due_date: Optional[str] = None

    def to_charge(self) -> ChargeSpec:
        return ChargeSpec(
            name=self.name,
            amount=self.amount,
            recurring=self.recurring,
            due_date=parse_date(self.due_date)
        )


class FeeModel(BaseModel):
    name: str
    calculation_type: str = Field(..., description="fixed, flat or percentage")
    amount: str
    charge_time_type: str = "disbursement"
    min_amount: Optional[str] = None
    max_amount: Optional[str] = None
    due_date: Optional[str] = None

    def to_fee_structure(self) -> FeeStructure:
        return FeeStructure(
            name=self.name,
            calculation_type=self.calculation_type,
            amount=self.amount,
            charge_time_type=self.charge_time_type,
            min_amount=self.min_amount,
            max_amount=self.max_amount
        )


class InstallmentModel(BaseModel):
    installment_number: int
    due_date: str
    principal_amount: str
    interest_amount: str
    fee_amount: str = "0"
    outstanding_principal: Optional[str] = None
    principal_paid: Optional[str] = None
    interest_paid: Optional[str] = None
    fee_paid: Optional[str] = None
    paid_amount: Optional[str] = None
    payment_status: Optional[str] = None


class PaymentModel(BaseModel):
    payment_amount: str
    payment_date: str
    payment_method: Optional[str] = None
    reference: Optional[str] = None


class LoanStateModel(BaseModel):
    loan_id: Optional[str] = None
    outstanding_balance: Optional[str] = None  # Derived from the schedule when omitted
    status: Optional[str] = None
    installments: List[InstallmentModel]
    payments: List[PaymentModel] = []
    penalties_outstanding: Optional[str] = None
    unscheduled_fees_outstanding: Optional[str] = None

    def to_loan_state(self) -> LoanState:
        return LoanState.from_dict(self.model_dump(exclude_none=True))


# Schedule schemas
class SchedulePreviewRequest(BaseModel):
    terms: LoanTermsModel
    charges: List[ChargeModel] = []
    fees: List[FeeModel] = []  # Product fees evaluated against the principal
    today: Optional[str] = None
    currency: Optional[str] = None


# Repayment schemas
class AllocatePaymentRequest(BaseModel):
    loan: LoanStateModel
    amount: str
    strategy: Optional[str] = None


class RecordPaymentRequest(BaseModel):
    loan: LoanStateModel
    payment: PaymentModel
    strategy: Optional[str] = None


class EarlySettlementRequest(BaseModel):
    loan: LoanStateModel
    payment_date: str
    settlement_fee: Optional[str] = None
    strategy: Optional[str] = None
    reference: Optional[str] = None


class WriteOffRequest(BaseModel):
    loan: LoanStateModel
    reason: Optional[str] = None


class LoanStatusRequest(BaseModel):
    loan: LoanStateModel
    as_of: Optional[str] = None


def installment_to_dict(installment: ScheduleInstallment, currency: Currency) -> Dict[str, Any]:
    """Installment as returned by the API, with display amounts"""
    result = installment.to_dict()
    result['total_display'] = Money(installment.total_amount, currency).to_string()
    return result


def state_to_dict(state: LoanState) -> Dict[str, Any]:
    return {
        "loan_id": state.loan_id,
        "outstanding_balance": str(state.outstanding_balance),
        "status": state.status.value,
        "penalties_outstanding": str(state.penalties_outstanding),
        "unscheduled_fees_outstanding": str(state.unscheduled_fees_outstanding),
        "installments": [i.to_dict() for i in state.installments],
        "payments": [
            {
                "payment_amount": str(p.amount),
                "payment_date": p.payment_date.isoformat(),
                "payment_method": p.method,
                "reference": p.reference
            }
            for p in state.payments
        ]
    }


def allocation_to_dict(result: AllocationResult, currency: Currency) -> Dict[str, Any]:
    data = result.to_dict()
    data["breakdown"] = result.describe(currency)
    return data
