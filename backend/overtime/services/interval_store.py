"""Per-owner non-overlap guarantee for overtime windows.

Two layers enforce it:

1. ``reserve`` locks live overlapping rows with ``FOR UPDATE SKIP LOCKED``
   and raises a ``ConflictError`` naming them. This gives callers a precise
   409 without blocking on rows that unrelated transactions hold.
2. The PostgreSQL exclusion constraint ``ex_overtime_requests_owner_window``
   catches whatever the pre-check cannot see (rows skipped because they were
   locked, or inserted concurrently). ``claim`` translates that violation
   into the same ``ConflictError``.

Both must run inside the caller's transaction; on conflict the caller rolls
the whole transaction back.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from overtime.core.errors import ConflictError
from overtime.models.overtime_request import OVERLAP_CONSTRAINT_NAME, OvertimeRequest
from overtime.models.shared import ensure_utc
from overtime.repositories.overtime_request_repository import OvertimeRequestRepository

OVERLAP_CODE = "OVERLAPPING_REQUEST"


def is_overlap_violation(exc: IntegrityError) -> bool:
    diag = getattr(exc.orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None) == OVERLAP_CONSTRAINT_NAME:
        return True
    return OVERLAP_CONSTRAINT_NAME in str(exc.orig)


class IntervalStore:
    def __init__(self, db: Session):
        self.db = db
        self.repo = OvertimeRequestRepository(db)

    def reserve(
        self,
        owner_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_id: UUID | None = None,
    ) -> None:
        overlapping = self.repo.lock_overlapping(owner_id, start_at, end_at, exclude_id)
        if overlapping:
            raise ConflictError(
                "Overlapping overtime request already exists for this time period",
                {
                    "overlapping_ids": [str(r.id) for r in overlapping],
                    "overlapping_requests": [
                        {
                            "id": str(r.id),
                            "start_at": ensure_utc(r.start_at).isoformat(),  # type: ignore[arg-type]
                            "end_at": ensure_utc(r.end_at).isoformat(),  # type: ignore[arg-type]
                            "status": r.status,
                        }
                        for r in overlapping
                    ],
                },
                code=OVERLAP_CODE,
            )

    @contextmanager
    def guard(self) -> Iterator[None]:
        """Translate an exclusion-constraint violation raised by a flush in the block."""
        try:
            yield
        except IntegrityError as exc:
            if is_overlap_violation(exc):
                raise ConflictError(
                    "Overlapping overtime request already exists for this time period",
                    {"overlapping_ids": [], "constraint": OVERLAP_CONSTRAINT_NAME},
                    code=OVERLAP_CODE,
                ) from exc
            raise

    def claim(self, request: OvertimeRequest) -> OvertimeRequest:
        """Insert the request row that holds the window."""
        with self.guard():
            return self.repo.add(request)
