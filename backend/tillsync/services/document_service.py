# Overview: Service-layer operations for document numbering; atomic per-branch sequences.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .concurrency import run_with_retry


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(branch_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    branch_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a branch/type.

    The counter is bumped with a single UPDATE so two writers can never
    read the same value. The first allocation inserts the row inside a
    savepoint; losing that insert race falls back to the UPDATE.
    """
    def _op() -> str:
        if not branch_id:
            raise DocumentSequenceError("branch_id is required")
        if not document_type:
            raise DocumentSequenceError("document_type is required")

        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.branch_id == branch_id,
                DocumentSequence.document_type == document_type,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            next_num = _current_number(branch_id, document_type) - 1
        else:
            try:
                with db.session.begin_nested():
                    db.session.add(DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2))
                next_num = 1
            except IntegrityError:
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                next_num = _current_number(branch_id, document_type) - 1

        return f"{prefix}-{branch_id:03d}-{next_num:0{pad}d}"

    return run_with_retry(_op, label="document number")
