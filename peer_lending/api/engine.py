"""
Stateless engine endpoints

Every request carries the loan, its disbursements and payments; nothing is
read from or written to storage.
"""

from fastapi import APIRouter, HTTPException

from .schemas import LoanSnapshotRequest, BreakdownRequest, MoneyModel, parse_decimal
from ..allocation import allocate_payment
from ..amortization import generate_schedule, amount_due, repayment_status
from ..distribution import distribute_breakdown
from ..valuation import payoff_balance


router = APIRouter()

NOT_READY = "Loan is missing a rate, term, payment day or confirmed disbursement"


@router.post("/schedule")
async def schedule(request: LoanSnapshotRequest):
    """Amortization schedule as of a date"""
    try:
        loan, disbursements, payments = request.records()
        result = generate_schedule(loan, disbursements, payments, request.as_of)
        if result is None:
            return {"ready": False, "schedule": None}
        return {
            "ready": True,
            "schedule": result.to_dict(),
            "amount_due": str(amount_due(result, loan, disbursements, payments, request.as_of)),
            "repayment_status": repayment_status(loan, result).value,
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/payoff")
async def payoff(request: LoanSnapshotRequest):
    """Amount settling the loan on as_of"""
    try:
        loan, disbursements, payments = request.records()
        balance = payoff_balance(loan, disbursements, payments, request.as_of)
        return {"as_of": request.as_of.isoformat(), "payoff": MoneyModel.from_money(balance)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/breakdown")
async def breakdown(request: BreakdownRequest):
    """Split a payment into interest, technology fee and capital"""
    try:
        loan, disbursements, payments = request.records()
        result = generate_schedule(loan, disbursements, payments, request.as_of)
        split = allocate_payment(parse_decimal(request.amount), result, loan, request.as_of, disbursements)
        if split is None:
            raise HTTPException(status_code=400, detail=NOT_READY)
        return {"breakdown": split.to_dict()}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/distribution")
async def distribution(request: BreakdownRequest):
    """Per-investor reinvestment amounts for a payment"""
    try:
        loan, disbursements, payments = request.records()
        result = generate_schedule(loan, disbursements, payments, request.as_of)
        split = allocate_payment(parse_decimal(request.amount), result, loan, request.as_of, disbursements)
        shares = distribute_breakdown(split, disbursements, loan) if split else None
        if shares is None:
            raise HTTPException(status_code=400, detail=NOT_READY)
        return {"breakdown": split.to_dict(), "distribution": shares.to_dict()}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
