"""
Base ORM Model.

============================================================
PURPOSE
============================================================
Provides the declarative base used by all ledger ORM models.

All timestamps are timezone-aware UTC.

============================================================
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric
from sqlalchemy.orm import DeclarativeBase


# Money and quantities share one precision across every table
LEDGER_NUMERIC = Numeric(24, 8)


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Maps ``datetime`` to timezone-aware columns and ``Decimal`` to the
    shared ledger precision so models can rely on plain annotations.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
        Decimal: LEDGER_NUMERIC,
    }
