"""
MongoDB Connection
==================

Explicit connection object shared by the MongoDB stores. Owns one
pymongo AsyncMongoClient (and its pool) for the process.

Lifecycle:
----------
    connection = MongoConnection(MongoConfig.from_env())
    result = await connection.connect()     # pings the server
    ...
    await connection.close()                # safe to call twice

    # or
    async with MongoConnection(config) as connection:
        ...

The driver is imported lazily in connect() so that the in-memory backends
work without pymongo installed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from commtrack.core.config import MongoConfig
from commtrack.core.errors import CommsError, ConfigurationError, StorageError
from commtrack.core.types import Err, Ok, Result
from commtrack.observability import StructuredLogger

if TYPE_CHECKING:
    from pymongo import AsyncMongoClient
    from pymongo.asynchronous.database import AsyncDatabase

logger = StructuredLogger("commtrack.storage.connection")


class MongoConnection:
    """
    Connection handle for the document store.

    Example:
        >>> async with MongoConnection(MongoConfig()) as conn:
        ...     buckets = conn.collection(conn.config.bucket_collection).unwrap()
    """

    __slots__ = ("_config", "_client", "_connected")

    def __init__(self, config: MongoConfig) -> None:
        self._config = config
        self._client: Optional["AsyncMongoClient"] = None
        self._connected = False

    @property
    def config(self) -> MongoConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> Result[None, CommsError]:
        """
        Create the client and verify the server is reachable.

        Returns:
            Ok(None) on success.
            Err(ConfigurationError) if pymongo is not installed.
            Err(StorageError) if the server cannot be reached.
        """
        if self._connected:
            return Ok(None)

        try:
            from pymongo import AsyncMongoClient
            from pymongo.errors import PyMongoError
        except ImportError:
            return Err(ConfigurationError.dependency_unavailable(
                "pymongo", "pip install 'pymongo>=4.13'"
            ))

        try:
            self._client = AsyncMongoClient(**self._config.get_client_kwargs())
            await self._client.admin.command("ping")
        except PyMongoError as e:
            logger.error(
                "MongoDB connection failed",
                target=self._config.redacted_uri,
                error=str(e),
            )
            if self._client is not None:
                await self._client.close()
                self._client = None
            return Err(StorageError.connection_failed(self._config.redacted_uri, e))

        self._connected = True
        logger.info(
            "MongoDB connected",
            target=self._config.redacted_uri,
            database=self._config.database,
        )
        return Ok(None)

    async def close(self) -> None:
        """Close the client. Safe to call multiple times."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._connected:
            logger.info("MongoDB connection closed", target=self._config.redacted_uri)
        self._connected = False

    async def __aenter__(self) -> MongoConnection:
        """Connect, raising the connection error on failure."""
        result = await self.connect()
        if result.is_err():
            raise result.error
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def database(self) -> Result["AsyncDatabase", StorageError]:
        if not self._connected or self._client is None:
            return Err(StorageError.not_connected("database"))
        return Ok(self._client[self._config.database])

    def collection(self, name: str) -> Result[Any, StorageError]:
        db = self.database()
        if db.is_err():
            return db
        return Ok(db.unwrap()[name])

    async def health_check(self) -> Result[Dict[str, Any], CommsError]:
        """
        Ping the server and report build info.

        Returns:
            Ok with health info dict, Err on failure.
        """
        if not self._connected or self._client is None:
            return Err(StorageError.not_connected("health_check"))

        from pymongo.errors import PyMongoError

        try:
            await self._client.admin.command("ping")
            info = await self._client.admin.command("buildInfo")
        except PyMongoError as e:
            return Err(StorageError.connection_failed(self._config.redacted_uri, e))

        return Ok({
            "connected": True,
            "target": self._config.redacted_uri,
            "database": self._config.database,
            "server_version": info.get("version", "unknown"),
        })
