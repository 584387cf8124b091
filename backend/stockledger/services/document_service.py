# Overview: Per-outlet document number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .concurrency import RetryableConflict


def next_document_number(
    *,
    outlet_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for an outlet/type inside the caller's
    transaction.

    The increment is a single UPDATE ... SET next_number = next_number + 1, so
    two writers serialize on the sequence row. When the row does not exist
    yet and a concurrent writer inserts it first, RetryableConflict restarts
    the whole caller operation.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.outlet_id == outlet_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(outlet_id=outlet_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(outlet_id=outlet_id, document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise RetryableConflict(f"document sequence for outlet {outlet_id} created concurrently") from exc
        next_num = 1

    return f"{prefix}-{str(next_num).zfill(pad)}"
