"""
Read-only adapters for the engine's external collaborators.

``BorrowerDirectory`` answers "who is this borrower and are they active";
``PolicyStore`` answers "what are this tenant's loan settings". Both are
backed by tables here, but the engine only ever calls ``get_borrower`` and
``get_policy``, so another roster or settings service can stand in.
"""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import get_config
from ..models.directory import Borrower, LibraryPolicy
from .schema import Borrower as BorrowerDB
from .schema import LibraryPolicy as LibraryPolicyDB
from .session import safe_query

logger = logging.getLogger(__name__)


class BorrowerLookup(Protocol):
    def get_borrower(self, borrower_id: str) -> Borrower | None: ...


class PolicyLookup(Protocol):
    def get_policy(self, tenant_id: str) -> LibraryPolicy: ...


class BorrowerDirectory:
    """Roster lookups scoped to one tenant."""

    def __init__(self, session: Session, tenant_id: str):
        self.session = session
        self.tenant_id = tenant_id

    def get_borrower(self, borrower_id: str) -> Borrower | None:
        borrower = safe_query(
            self.session,
            lambda s: s.execute(
                select(BorrowerDB).where(
                    BorrowerDB.id == borrower_id, BorrowerDB.tenant_id == self.tenant_id
                )
            ).scalar_one_or_none(),
            "Failed to get borrower",
        )
        if borrower is None:
            return None
        return Borrower.model_validate(borrower, from_attributes=True)


class PolicyStore:
    """Per-tenant library settings with configured defaults for unset values."""

    def __init__(self, session: Session):
        self.session = session

    def get_policy(self, tenant_id: str) -> LibraryPolicy:
        config = get_config()
        row = safe_query(
            self.session,
            lambda s: s.execute(
                select(LibraryPolicyDB).where(LibraryPolicyDB.tenant_id == tenant_id)
            ).scalar_one_or_none(),
            "Failed to get library policy",
        )

        if row is None:
            logger.debug("No library policy for tenant %s, using defaults", tenant_id)

        # Zero and NULL both mean "unset", matching how tenants' settings are stored
        return LibraryPolicy(
            loan_duration_days=(row and row.loan_duration_days)
            or config.default_loan_duration_days,
            fine_per_day=(row and row.fine_per_day) or config.default_fine_per_day,
            max_books_per_student=(row and row.max_books_per_student)
            or config.default_max_books_per_student,
        )
