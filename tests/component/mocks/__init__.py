"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (database).
"""

from .db_mock import MockAsyncPostgresClient

__all__ = [
    'MockAsyncPostgresClient',
]
