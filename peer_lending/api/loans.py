"""
Loan endpoints
"""

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status

from .schemas import CreateLoanRequest, StatusChangeRequest, PaymentDayRequest, MoneyModel, parse_decimal
from .system import LendingSystem, get_lending_system
from ..amortization import generate_schedule
from ..loans import Loan, LoanStatus, DisbursementStatus
from ..valuation import payoff_balance


router = APIRouter()


def _loan_summary(loan: Loan):
    return {
        "loan_id": loan.id,
        "borrower_id": loan.borrower_id,
        "amount": MoneyModel.from_money(loan.amount),
        "monthly_interest_rate": str(loan.monthly_interest_rate) if loan.monthly_interest_rate is not None else None,
        "term_months": loan.term_months,
        "payment_day": loan.payment_day,
        "status": loan.status.value,
        "funded_percentage": str(loan.funded_percentage),
        "committed_percentage": str(loan.committed_percentage),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan request"""
    try:
        rate = request.monthly_interest_rate
        loan = system.loan_manager.create_loan(
            borrower_id=request.borrower_id,
            amount=request.amount.to_money(),
            monthly_interest_rate=parse_decimal(rate, "monthly_interest_rate") if rate else None,
            term_months=request.term_months,
            technology_fee=request.technology_fee.to_money() if request.technology_fee else None,
            purpose=request.purpose,
        )
        return _loan_summary(loan)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    return _loan_summary(loan)


@router.post("/{loan_id}/status")
async def change_status(
    loan_id: str,
    request: StatusChangeRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Move a loan through its lifecycle"""
    try:
        loan = system.loan_manager.change_status(loan_id, LoanStatus(request.status), request.user_id)
        return _loan_summary(loan)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{loan_id}/publish")
async def publish_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Open an approved loan for funding"""
    try:
        return _loan_summary(system.ledger.publish_loan(loan_id))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{loan_id}/payment-day")
async def set_payment_day(
    loan_id: str,
    request: PaymentDayRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Choose the payment day of a funded loan"""
    try:
        return _loan_summary(system.loan_manager.set_payment_day(loan_id, request.payment_day))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{loan_id}/schedule")
async def get_schedule(
    loan_id: str,
    as_of: Optional[date] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Amortization schedule and payoff of a stored loan"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    as_of = as_of or datetime.now(timezone.utc).date()
    disbursements = system.loan_manager.get_disbursements(loan_id, DisbursementStatus.CONFIRMED)
    payments = system.loan_manager.get_payments(loan_id)
    schedule = generate_schedule(loan, disbursements, payments, as_of)
    return {
        "loan_id": loan_id,
        "schedule": schedule.to_dict() if schedule else None,
        "payoff": MoneyModel.from_money(payoff_balance(loan, disbursements, payments, as_of)),
    }
