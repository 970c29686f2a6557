from __future__ import annotations

from typing import Any


def _import_pymongo() -> Any:
    try:
        import pymongo  # type: ignore
    except ImportError as exc:
        raise RuntimeError("pymongo is required for the MongoDB document store; install pymongo>=4") from exc
    return pymongo


class MongoCollectionProvider:
    """Lazily opens one MongoClient and hands out collections from a single database."""

    def __init__(self, *, uri: str, database: str, server_selection_timeout_ms: int = 5000) -> None:
        if not uri.strip():
            raise ValueError("MONGO_URI must not be empty")
        if not database.strip():
            raise ValueError("MONGO_DATABASE must not be empty")
        self._uri = uri.strip()
        self._database = database.strip()
        self._timeout_ms = server_selection_timeout_ms
        self._client: Any = None

    def collection(self, name: str) -> Any:
        if self._client is None:
            pymongo = _import_pymongo()
            self._client = pymongo.MongoClient(self._uri, serverSelectionTimeoutMS=self._timeout_ms)
        return self._client[self._database][name]

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
