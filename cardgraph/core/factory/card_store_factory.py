"""
Factory for creating card store backends.
"""

from cardgraph.config import CardStoreConfig
from cardgraph.core.card_store.base import CardStore
from cardgraph.core.card_store.memory_store import InMemoryCardStore
from cardgraph.core.card_store.sqlite_store import SQLiteCardStore
from cardgraph.utils.exceptions import ConfigurationError


class CardStoreFactory:
    """Factory for creating card store backends from configuration."""

    @staticmethod
    def create(config: CardStoreConfig) -> CardStore:
        """
        Create card store from configuration.

        Args:
            config: Card store configuration

        Returns:
            Card store instance

        Raises:
            ConfigurationError: If backend is not supported
        """
        if config.backend == "sqlite":
            store: CardStore = SQLiteCardStore(db_path=config.db_path)
        elif config.backend == "memory":
            store = InMemoryCardStore()
        else:
            raise ConfigurationError(f"Unsupported card store backend: {config.backend}")

        store.max_update_attempts = config.max_update_attempts
        return store
