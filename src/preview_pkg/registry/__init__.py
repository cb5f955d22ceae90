"""Registry service package."""

from .config import RegistryProfile
from .store import PackageStore, PutResult, StoredObject

__all__ = ["PackageStore", "PutResult", "RegistryProfile", "StoredObject"]
