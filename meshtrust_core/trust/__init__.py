# meshtrust_core/trust/__init__.py

from .models import TrustRecord, TrustStatus, TrustAction, transition
from .provider import TrustStore
from .providers.memory_provider import InMemoryTrustStore
from .providers.sqlite_provider import SQLiteTrustStore


def load_trust_store(config=None) -> TrustStore:
    """
    Factory resolver for the runtime trust store backend.

        - sqlite (default)
        - memory
    """
    from meshtrust_core.config import AuthConfig

    config = config or AuthConfig.from_env()
    provider = config.store_provider

    if provider == "memory":
        return InMemoryTrustStore()

    if provider == "sqlite":
        return SQLiteTrustStore(config.db_path)

    raise ValueError(f"Unknown trust store provider: {provider}")


__all__ = [
    "TrustRecord",
    "TrustStatus",
    "TrustAction",
    "transition",
    "TrustStore",
    "InMemoryTrustStore",
    "SQLiteTrustStore",
    "load_trust_store",
]
