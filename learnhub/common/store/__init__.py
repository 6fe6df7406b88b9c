"""
Data store access for LearnHub.

Provides the typed query builder, credential strategies and the two table
clients (PostgREST over aiohttp, and in-memory).
"""

from learnhub.common.store.base import Row, TableClient
from learnhub.common.store.client import PostgrestClient
from learnhub.common.store.credentials import (
    CredentialMode,
    CredentialStrategy,
    resolve_credentials,
)
from learnhub.common.store.memory import MemoryTableClient
from learnhub.common.store.query import FilterOp, StoreQuery

__all__ = [
    'Row',
    'TableClient',
    'PostgrestClient',
    'MemoryTableClient',
    'CredentialMode',
    'CredentialStrategy',
    'resolve_credentials',
    'FilterOp',
    'StoreQuery',
]
