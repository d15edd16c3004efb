"""
Persistence store for task snapshots and memories.
"""

from taskpilot import config, logger

from .base import TaskStore, extract_keywords
from .memory_store import InMemoryTaskStore


def create_store(backend: str = None) -> TaskStore:
    """
    Create the configured store.

    Args:
        backend: 'memory' or 'postgres' (defaults to STORE_BACKEND)
    """
    backend = (backend or config.STORE_BACKEND).lower()

    if backend == 'postgres':
        from .postgres import PostgresTaskStore

        store = PostgresTaskStore(config.DATABASE_URL)
        store.ensure_schema()
        logger.info('Using PostgreSQL store')
        return store

    if backend != 'memory':
        raise ValueError(f'Unsupported store backend: {backend}. Available: memory, postgres')

    logger.info('Using in-memory store')
    return InMemoryTaskStore()


__all__ = [
    'TaskStore',
    'InMemoryTaskStore',
    'create_store',
    'extract_keywords',
]
