"""
Loan standing endpoints
"""

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import get_servicer
from .schemas import LoanStatusRequest, parse_date
from ..servicing import LoanServicer


router = APIRouter()


@router.post("/status")
async def get_loan_status(
    request: LoanStatusRequest,
    servicer: LoanServicer = Depends(get_servicer)
):
    """Derived status, arrears and timely repayment percentage as of a date"""
    try:
        report = servicer.loan_status(request.loan.to_loan_state(), parse_date(request.as_of))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "as_of": report.as_of.isoformat(),
        "status": report.derived.status.value,
        "category": report.derived.status.category,
        "days_in_arrears": report.derived.days_in_arrears,
        "overpaid_amount": str(report.derived.overpaid_amount),
        "timely_repayment_percentage": report.timely_repayment_percentage,
        "outstanding_balance": str(report.outstanding_balance),
        "total_paid": str(report.total_paid),
        "arrears": {
            "in_arrears": report.arrears.in_arrears,
            "overdue_installments": list(report.arrears.overdue_installments),
            "overdue_amount": str(report.arrears.overdue_amount),
            "oldest_due_date": (
                report.arrears.oldest_due_date.isoformat()
                if report.arrears.oldest_due_date else None
            )
        },
        "balances": {
            "principal": str(report.balances.principal),
            "interest": str(report.balances.interest),
            "fees": str(report.balances.fees),
            "penalties": str(report.balances.penalties)
        }
    }
