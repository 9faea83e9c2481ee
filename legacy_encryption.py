"""Encrypt sensitive columns of rows written before field encryption existed."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

import codec
from models import (
    Budget,
    CategoryAggregate,
    DailyAggregate,
    MonthlyAggregate,
    RecurringTransaction,
    Trade,
    Transaction,
    User,
    Wallet,
)


logger = logging.getLogger(__name__)

ENCRYPTED_COLUMNS = (
    (Transaction, ("merchant", "amount", "description")),
    (Wallet, ("balance",)),
    (Budget, ("limit",)),
    (RecurringTransaction, ("name", "amount")),
    (User, ("trading_balance",)),
    (Trade, ("amount", "entry_price", "close_price", "pnl", "notes")),
    (MonthlyAggregate, ("income", "expense")),
    (DailyAggregate, ("income", "expense")),
    (CategoryAggregate, ("amount",)),
)


@dataclass
class LegacyEncryptionSummary:
    scanned: int = 0
    updated: dict[str, int] = field(default_factory=dict)

    @property
    def total_updated(self) -> int:
        return sum(self.updated.values())


def encrypt_legacy_rows(session: Session) -> LegacyEncryptionSummary:
    """Encrypt every plaintext value in the sensitive columns.

    Values already in ``iv:cipher`` form, empty strings and NULLs are left
    alone, so running this again changes nothing. All tables are rewritten in
    a single commit.
    """
    summary = LegacyEncryptionSummary()
    try:
        for model, columns in ENCRYPTED_COLUMNS:
            updated = 0
            for row in session.scalars(select(model).order_by(model.id)).all():
                summary.scanned += 1
                changed = False
                for column in columns:
                    value = getattr(row, column)
                    if not value or codec.looks_encrypted(value):
                        continue
                    setattr(row, column, codec.encrypt(value))
                    changed = True
                if changed:
                    updated += 1
            summary.updated[model.__tablename__] = updated
            logger.info(
                f"legacy_encryption: table={model.__tablename__} updated={updated}"
            )
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(
        f"legacy_encryption: scanned={summary.scanned} "
        f"updated={summary.total_updated}"
    )
    return summary
