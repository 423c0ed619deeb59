"""
Storage Package.

This package manages all ledger persistence.

Modules:
- database: Connection and session management
- models/: Ledger ORM models
"""

from .database import Database, DatabaseConfig
