# Overview: Service-layer operations for document numbering.

from __future__ import annotations

import secrets
import string
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Sale
from pharmapos.time_utils import utcnow


CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


class DocumentSequenceError(Exception):
    """Raised when a unique document number cannot be allocated."""
    pass


def generate_transaction_code(prefix: str = "TXN", now: datetime | None = None) -> str:
    """Human-readable sale code: PREFIX-YYYYMMDD-XXXXXX (random A-Z0-9 suffix)."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


def next_transaction_code(now: datetime | None = None) -> str:
    """
    Allocate a transaction code not already used by a sale.

    sales.transaction_code is UNIQUE, so a collision that slips past this
    check still fails the insert and rolls the sale back.
    """
    prefix = current_app.config.get("TRANSACTION_CODE_PREFIX", "TXN")
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_transaction_code(prefix, now)
        exists = db.session.query(Sale.id).filter(Sale.transaction_code == code).first()
        if exists is None:
            return code
    raise DocumentSequenceError("Could not allocate a unique transaction code")
