"""
Module: split_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ DTOs.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, NOT raw
      ORM model instances.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  The caller owns the session and its transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _clamp_paging(skip: int, take: int, max_take: int = 100) -> tuple[int, int]:
        if skip < 0:
            raise ValueError(f"skip must be >= 0, got {skip}")
        if take < 1:
            raise ValueError(f"take must be >= 1, got {take}")
        return skip, min(take, max_take)
