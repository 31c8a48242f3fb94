from taskflow.providers.backends.base import BackendHandle, DocumentHandle, DocumentStore, FirestoreHandle
from taskflow.providers.backends.factory import BackendConnector, BackendParams, connect_backend, shared_params
from taskflow.providers.backends.memory import InMemoryDocumentStore

__all__ = [
    "BackendConnector",
    "BackendHandle",
    "BackendParams",
    "DocumentHandle",
    "DocumentStore",
    "FirestoreHandle",
    "InMemoryDocumentStore",
    "connect_backend",
    "shared_params",
]
