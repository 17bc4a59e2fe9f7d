"""
Schedule endpoints
"""

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import get_servicer
from .schemas import MoneyModel, SchedulePreviewRequest, installment_to_dict, parse_date
from ..currency import Currency, Money
from ..fees import ChargeTimeType, calculate_total_fees
from ..schedule import ScheduleGenerator
from ..servicing import LoanServicer


router = APIRouter()


@router.post("/preview")
async def preview_schedule(
    request: SchedulePreviewRequest,
    servicer: LoanServicer = Depends(get_servicer)
):
    """Preview a repayment schedule before a loan is submitted"""
    try:
        currency = Currency[request.currency] if request.currency else servicer.currency
        terms = request.terms.to_loan_terms()

        # Early-settlement fees are charged at payoff, not on the schedule
        scheduled_fees = [
            (fee.to_fee_structure(), parse_date(fee.due_date)) for fee in request.fees
        ]
        scheduled_fees = [
            (structure, due) for structure, due in scheduled_fees
            if structure.charge_time_type != ChargeTimeType.EARLY_SETTLEMENT
        ]
        fee_breakdown = calculate_total_fees([s for s, _ in scheduled_fees], terms.principal)

        charges = [charge.to_charge() for charge in request.charges]
        charges += [structure.to_charge(terms.principal, due) for structure, due in scheduled_fees]

        generator = ScheduleGenerator(servicer.config, currency)
        schedule, summary = generator.preview(terms, charges, today=parse_date(request.today))
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unknown currency: {request.currency}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "schedule": [installment_to_dict(entry, currency) for entry in schedule],
        "summary": {
            "installment_count": summary.installment_count,
            "total_principal": MoneyModel.from_money(Money(summary.total_principal, currency)).model_dump(),
            "total_interest": MoneyModel.from_money(Money(summary.total_interest, currency)).model_dump(),
            "total_fees": MoneyModel.from_money(Money(summary.total_fees, currency)).model_dump(),
            "total_amount": MoneyModel.from_money(Money(summary.total_amount, currency)).model_dump(),
            "installment_amount": MoneyModel.from_money(Money(summary.installment_amount, currency)).model_dump(),
            "first_due_date": summary.first_due_date.isoformat(),
            "last_due_date": summary.last_due_date.isoformat()
        },
        "fees": {
            "total": MoneyModel.from_money(Money(fee_breakdown.total, currency)).model_dump(),
            "items": [
                {"name": fee.name, "amount": str(fee.calculated_amount), "display": fee.display(currency)}
                for fee in fee_breakdown.fees
            ],
            "has_limits_applied": fee_breakdown.has_limits_applied,
            "warning": fee_breakdown.warning_message
        }
    }
