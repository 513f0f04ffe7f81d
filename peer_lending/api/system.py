"""
Lending system container shared by the API routers
"""

from typing import Optional

from ..audit import AuditTrail
from ..funding import FundingLedger
from ..loans import LoanManager
from ..reservations import ReservationManager
from ..storage import StorageInterface, create_storage


class LendingSystem:
    """All stateful components wired to one storage backend"""

    def __init__(self, storage: Optional[StorageInterface] = None):
        self.storage = storage or create_storage()
        self.audit_trail = AuditTrail(self.storage)
        self.loan_manager = LoanManager(self.storage, self.audit_trail)
        self.reservations = ReservationManager(self.storage, self.audit_trail)
        self.ledger = FundingLedger(self.storage, self.audit_trail,
                                    self.reservations, self.loan_manager)


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system
