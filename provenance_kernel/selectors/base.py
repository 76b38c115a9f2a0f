"""
Module: provenance_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors over the
    causal tables.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/ records.  MUST NOT import from services/ or store/.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen domain records
      (CausalPath, CausalNode), NOT raw ORM model instances.
    - Session ownership: the caller owns the session and its transaction scope.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Subclasses implement the queries; this class only holds the session.
    """

    def __init__(self, session: Session):
        self.session = session
