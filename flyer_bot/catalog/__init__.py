from .persister import CatalogPersister, PersistReport

__all__ = [
    "CatalogPersister",
    "PersistReport",
]
