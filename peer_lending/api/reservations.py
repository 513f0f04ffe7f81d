"""
Reservation endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .schemas import ReservationRequest, MoneyModel
from .system import LendingSystem, get_lending_system
from ..reservations import InsufficientCapacityError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def claim_reservation(
    request: ReservationRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Hold loan capacity for a payer"""
    try:
        loan = system.loan_manager.require_loan(request.loan_id)
        reservation = system.reservations.claim(loan, request.payer_id, request.amount.to_money())
        return {
            "reservation_id": reservation.id,
            "amount": MoneyModel.from_money(reservation.amount),
            "expires_at": reservation.expires_at.isoformat(),
        }
    except InsufficientCapacityError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{loan_id}")
async def list_reservations(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Unexpired holds on a loan"""
    return {
        "reservations": [
            {
                "payer_id": r.payer_id,
                "amount": MoneyModel.from_money(r.amount),
                "expires_at": r.expires_at.isoformat(),
            }
            for r in system.reservations.active_reservations(loan_id)
        ]
    }


@router.delete("/{loan_id}/{payer_id}")
async def release_reservation(
    loan_id: str,
    payer_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Release a payer's hold on a loan"""
    if not system.reservations.release(loan_id, payer_id):
        raise HTTPException(status_code=404, detail="Reservation not found")
    return {"message": "Reservation released"}
