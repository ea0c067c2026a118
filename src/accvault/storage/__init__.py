# accvault Storage Module - SQLite persistence
#
# Schema/transactions and owner-scoped record storage. Bulk export/import
# lives in accvault.storage.transfer.

from .database import VaultDatabase
from .record_store import RecordStore

__all__ = ["VaultDatabase", "RecordStore"]
