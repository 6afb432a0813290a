from .base_store import TableHandle, TableStore

__all__ = ["TableHandle", "TableStore"]
