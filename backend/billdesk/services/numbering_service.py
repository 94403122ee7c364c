# Overview: Sequential human-readable numbers for quotes and invoices.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


QUOTE_PREFIX = "QT"
INVOICE_PREFIX = "INV"


def _current(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Atomically allocate the next number for a document type.

    The counter is bumped with a single UPDATE so two writers never see the
    same value. The first allocation inserts the sequence row; losing that
    insert race falls back to the UPDATE path.

    Does not commit: the number belongs to the caller's transaction.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current(document_type) - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current(document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"


def next_quote_number() -> str:
    return next_document_number(document_type="quote", prefix=QUOTE_PREFIX)


def next_invoice_number() -> str:
    return next_document_number(document_type="invoice", prefix=INVOICE_PREFIX)
