"""Remote document store clients and authorization."""

from crew_sync.remote.auth import Authorizer, NullAuthorizer, StaticTokenAuthorizer
from crew_sync.remote.base import (
    SERVER_TIMESTAMP,
    ChangeBatch,
    DocumentChange,
    RemoteStore,
)
from crew_sync.remote.http_remote import HttpRemoteStore
from crew_sync.remote.memory_remote import InMemoryRemoteStore

__all__ = [
    "SERVER_TIMESTAMP",
    "Authorizer",
    "ChangeBatch",
    "DocumentChange",
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "NullAuthorizer",
    "RemoteStore",
    "StaticTokenAuthorizer",
]
