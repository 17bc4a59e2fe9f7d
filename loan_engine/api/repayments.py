"""
Repayment endpoints: allocation preview, payment recording, early settlement
and write-off
"""

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import get_servicer
from .schemas import (
    AllocatePaymentRequest, EarlySettlementRequest, RecordPaymentRequest,
    WriteOffRequest, allocation_to_dict, parse_date, state_to_dict
)
from ..allocation import Payment
from ..servicing import LoanServicer


router = APIRouter()


@router.post("/allocate")
async def allocate_payment(
    request: AllocatePaymentRequest,
    servicer: LoanServicer = Depends(get_servicer)
):
    """Show how a payment would be allocated without recording it"""
    try:
        result = servicer.allocator.apply(
            request.loan.to_loan_state(), request.amount, request.strategy
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"allocation": allocation_to_dict(result, servicer.currency)}


@router.post("")
async def record_payment(
    request: RecordPaymentRequest,
    servicer: LoanServicer = Depends(get_servicer)
):
    """Record a payment and return the updated loan state"""
    try:
        payment = Payment.from_dict(request.payment.model_dump(exclude_none=True))
        outcome = servicer.record_payment(
            request.loan.to_loan_state(), payment, request.strategy
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "allocation": allocation_to_dict(outcome.allocation, servicer.currency),
        "loan": state_to_dict(outcome.state),
        "message": "Loan payment processed successfully"
    }


@router.post("/settlement")
async def settle_early(
    request: EarlySettlementRequest,
    servicer: LoanServicer = Depends(get_servicer)
):
    """Settle a loan early with an optional settlement fee"""
    try:
        outcome = servicer.early_settlement(
            request.loan.to_loan_state(),
            payment_date=parse_date(request.payment_date),
            fee=request.settlement_fee,
            strategy=request.strategy,
            reference=request.reference
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "payoff_amount": str(outcome.quote.payoff_amount),
        "settlement_fee": str(outcome.quote.settlement_fee),
        "allocation": allocation_to_dict(outcome.allocation, servicer.currency),
        "loan": state_to_dict(outcome.state)
    }


@router.post("/write-off")
async def write_off_loan(
    request: WriteOffRequest,
    servicer: LoanServicer = Depends(get_servicer)
):
    """Write off the remaining balance"""
    try:
        result = servicer.write_off(request.loan.to_loan_state(), reason=request.reason)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "written_off_amount": str(result.written_off_amount),
        "previous_outstanding": str(result.previous_outstanding),
        "status": result.resulting_status.value,
        "loan": state_to_dict(result.state)
    }
