# Overview: Reference-number allocation for trade documents and credit notes.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence
from ..errors import ValidationError


def next_reference(*, document_type: str, prefix: str, pad: int = 5) -> str:
    """
    Allocate the next reference number for a document type, e.g. "FV-00012".

    Runs inside the caller's coordinated operation: the counter bump commits
    or rolls back together with the document that uses it. A concurrent
    first insert of the same sequence row surfaces as an IntegrityError and
    is left to the caller's transaction to fail.
    """
    if not document_type:
        raise ValidationError("document_type is required")
    if not prefix:
        raise ValidationError("reference prefix is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        number = 1

    return f"{prefix}-{number:0{pad}d}"
