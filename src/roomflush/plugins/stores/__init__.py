"""Document stores implementing both DocumentSource and PersistenceBackend."""

from roomflush.plugins.stores.json_directory import JsonDirectoryStore
from roomflush.plugins.stores.memory import InMemoryDocumentStore
from roomflush.plugins.stores.query import DocumentQuery

__all__ = [
    "DocumentQuery",
    "InMemoryDocumentStore",
    "JsonDirectoryStore",
]
