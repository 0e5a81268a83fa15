"""
Counting adapters for datastore existence checks.

An adapter answers one question: how many records of ``model`` match ``query``.
``MongoAdapter`` works with PyMongo collections (run in a worker thread) and Motor
collections (awaited directly). ``CallableAdapter`` wraps any sync or async function.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

import structlog
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from formhandler.exceptions import DatabaseCheckError

logger = structlog.get_logger(__name__)


class DBAdapter(ABC):
    """Contract of the counting collaborator used by ``DBChecker``."""

    @abstractmethod
    async def count(self, model: Any, query: Dict[str, Any]) -> int:
        """Return the number of records of ``model`` matching ``query``."""


class MongoAdapter(DBAdapter):
    """
    Counts documents of a PyMongo or Motor collection.

    ``model`` is the collection object itself. PyMongo failures are wrapped in
    ``DatabaseCheckError``.
    """

    async def count(self, model: Any, query: Dict[str, Any]) -> int:
        count_documents = getattr(model, 'count_documents', None)
        if count_documents is None:
            raise DatabaseCheckError(
                f"{model!r} does not support count_documents",
                details={'query': str(query)}
            )

        try:
            if isinstance(model, Collection):
                count = await asyncio.to_thread(count_documents, query)
            else:
                count = count_documents(query)
                if inspect.isawaitable(count):
                    count = await count
        except PyMongoError as exc:
            raise DatabaseCheckError(
                f"count_documents failed: {exc}",
                details={'collection': getattr(model, 'name', repr(model)), 'query': str(query)}
            ) from exc

        logger.debug(
            "Existence count completed",
            collection=getattr(model, 'name', repr(model)),
            filter=str(query),
            count=count
        )
        return int(count)


class CallableAdapter(DBAdapter):
    """Adapter around a ``count(model, query)`` function, sync or async."""

    def __init__(self, counter: Callable[[Any, Dict[str, Any]], Any]):
        self.counter = counter

    async def count(self, model: Any, query: Dict[str, Any]) -> int:
        result = self.counter(model, query)
        if inspect.isawaitable(result):
            result = await result
        return int(result)
