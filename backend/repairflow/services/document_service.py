# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..errors import ValidationError


def next_document_number(*, shop_id: int, document_type: str) -> str:
    """
    Allocate the next document number for a shop/type inside the caller's transaction.

    Uses an atomic UPDATE on (shop_id, document_type); the first number for
    a type inserts the sequence row inside a savepoint so a concurrent insert
    does not discard the caller's pending work.
    """
    if not shop_id:
        raise ValidationError("shop_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    prefixes = current_app.config["DOCUMENT_PREFIXES"]
    if document_type not in prefixes:
        raise ValidationError(f"Unknown document type: {document_type}")
    prefix = prefixes[document_type]
    pad = current_app.config.get("DOCUMENT_NUMBER_PAD", 4)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.shop_id == shop_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(shop_id, document_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(shop_id=shop_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            # Lost the race to create the row; it exists now.
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(shop_id, document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"


def _current_number(shop_id: int, document_type: str) -> int:
    db.session.flush()
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(shop_id=shop_id, document_type=document_type)
        .scalar()
    )

