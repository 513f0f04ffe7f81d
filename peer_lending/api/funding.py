"""
Funding ledger endpoints
"""

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Depends, status

from .schemas import CommitRepaymentRequest, CommitInvestmentRequest, RejectRequest, MoneyModel
from .system import LendingSystem, get_lending_system
from ..allocation import allocate_payment
from ..amortization import generate_schedule
from ..distribution import distribute_breakdown
from ..funding import CapacityConflictError
from ..loans import DisbursementStatus
from ..reservations import redistribute_payment


router = APIRouter()


def _disbursement_summary(disbursement):
    return {
        "disbursement_id": disbursement.id,
        "loan_id": disbursement.loan_id,
        "investor_id": disbursement.investor_id,
        "amount": MoneyModel.from_money(disbursement.amount),
        "status": disbursement.status.value,
    }


@router.post("/repayments", status_code=status.HTTP_201_CREATED)
async def commit_repayment(
    request: CommitRepaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Reinvest a borrower repayment into loans awaiting funding"""
    try:
        now = datetime.now(timezone.utc)
        as_of = request.as_of or now.date()
        amount = request.amount.to_money()
        loans = system.loan_manager

        loan = loans.require_loan(request.paying_loan_id)
        disbursements = loans.get_disbursements(loan.id, DisbursementStatus.CONFIRMED)
        schedule = generate_schedule(loan, disbursements, loans.get_payments(loan.id), as_of)
        breakdown = allocate_payment(amount, schedule, loan, as_of, disbursements)
        distribution = distribute_breakdown(breakdown, disbursements, loan) if breakdown else None
        if distribution is None:
            raise ValueError(f"Loan {loan.id} has no schedule to pay against")

        if request.allocations:
            allocations = [a.to_allocation() for a in request.allocations]
        else:
            queue = loans.funding_queue()
            held = [r for target in queue for r in system.reservations.active_reservations(target.id)]
            plan = redistribute_payment(amount, queue, held, request.payer_id, now,
                                        exclude_loan_id=loan.id)
            if plan.undistributed.is_positive():
                raise HTTPException(
                    status_code=409,
                    detail=f"Only {plan.allocated.to_string() if plan.allocated else 'nothing'} "
                           f"can be placed right now, please retry with a smaller amount",
                )
            allocations = plan.allocations

        written = system.ledger.commit_repayment(
            paying_loan_id=loan.id,
            payer_id=request.payer_id,
            breakdown=breakdown,
            allocations=allocations,
            source_breakdown=distribution.source_breakdown(),
            proof_urls=request.proof_urls,
            as_of=now,
        )
        return {
            "breakdown": breakdown.to_dict(),
            "disbursements": [_disbursement_summary(d) for d in written],
        }
    except CapacityConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/investments", status_code=status.HTTP_201_CREATED)
async def commit_investment(
    request: CommitInvestmentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a direct investment awaiting confirmation"""
    try:
        disbursement = system.ledger.commit_investment(
            loan_id=request.loan_id,
            investor_id=request.investor_id,
            amount=request.amount.to_money(),
            proof_url=request.proof_url,
        )
        return _disbursement_summary(disbursement)
    except CapacityConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/disbursements/{disbursement_id}/confirm")
async def confirm_disbursement(
    disbursement_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Confirm a pending investment or repayment entry"""
    try:
        confirmed = system.ledger.confirm_investment(disbursement_id)
        return {"confirmed": [_disbursement_summary(d) for d in confirmed]}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/disbursements/{disbursement_id}/reject")
async def reject_disbursement(
    disbursement_id: str,
    request: RejectRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Reject a pending disbursement"""
    try:
        disbursement = system.ledger.reject_investment(disbursement_id, request.reason)
        return _disbursement_summary(disbursement)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/disbursements/{disbursement_id}/revert")
async def revert_repayment(
    disbursement_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Undo a pending repayment entry"""
    try:
        loan = system.ledger.revert_repayment(disbursement_id)
        return {"loan_id": loan.id, "committed_percentage": str(loan.committed_percentage)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
