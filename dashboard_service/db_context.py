"""
Connection context: which database the current operation runs against.

One ``AsyncMongoClient`` (and so one connection pool) is shared by the whole
process.  The context only decides which ``AsyncDatabase`` handle callers
get back:

  - ``use_database(name)`` switches the ambient target and caches its handle
  - ``get_handle()``       returns the cached handle, creating it lazily
  - ``database_for(name)`` hands out a handle for an explicit name without
    touching the ambient target, so concurrent requests cannot clobber
    each other
  - ``reset()``            forgets the cached handle, not the pool

The first connect is single-flight: concurrent callers all await the same
task instead of each opening a client.
"""

import asyncio
from typing import Callable, List, Optional

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import ConfigurationError, PyMongoError

from config import HIDDEN_DATABASES, SERVER_SELECTION_TIMEOUT_MS
from errors import ConnectionFailure
from logger import logger

# Database used when neither the caller, the config nor the URI names one
FALLBACK_DATABASE = "test"

ClientFactory = Callable[[], AsyncMongoClient]


class DatabaseContext:
    """Owns the shared client and the ambient "current database"."""

    def __init__(
        self,
        mongo_uri: str,
        default_database: str = "",
        client_factory: Optional[ClientFactory] = None,
    ):
        self.mongo_uri = mongo_uri
        self.default_database = default_database
        self._client_factory = client_factory or self._default_client_factory

        self._client: Optional[AsyncMongoClient] = None
        self._connecting: Optional[asyncio.Task] = None

        self._current_db: Optional[AsyncDatabase] = None
        self._current_db_name = ""

    # ---------------------- CLIENT LIFECYCLE ----------------------

    def _default_client_factory(self) -> AsyncMongoClient:
        return AsyncMongoClient(
            self.mongo_uri,
            serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
            tz_aware=True,
        )

    async def _open_client(self) -> AsyncMongoClient:
        """Create the client and force a round trip so bad URIs fail here."""
        logger.info("[CONTEXT] Connecting to MongoDB cluster")
        try:
            client = self._client_factory()
        except ConfigurationError as e:
            raise ConnectionFailure(f"Invalid MongoDB configuration: {e}") from e

        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            await client.close()
            logger.error("[CONTEXT] Connection failed: %s", e)
            raise ConnectionFailure(
                "Failed to connect to MongoDB cluster. "
                "Check your MongoDB URI, credentials and network."
            ) from e

        logger.info("[CONTEXT] Connected")
        return client

    async def get_client(self) -> AsyncMongoClient:
        if self._client is not None:
            return self._client

        task = self._connecting
        if task is None:
            task = asyncio.get_running_loop().create_task(self._open_client())
            self._connecting = task

        try:
            client = await asyncio.shield(task)
        except Exception:
            # let the next caller retry from scratch
            if self._connecting is task:
                self._connecting = None
            raise

        if self._client is None:
            self._client = client
        self._connecting = None
        return self._client

    async def close(self) -> None:
        """Drop the handle and close the client (application shutdown)."""
        self.reset()
        client, self._client = self._client, None
        if client is not None:
            await client.close()
            logger.info("[CONTEXT] Client closed")

    # ---------------------- HANDLES ----------------------

    def _database(self, client: AsyncMongoClient, name: str) -> AsyncDatabase:
        if name:
            return client[name]
        if self.default_database:
            return client[self.default_database]
        return client.get_default_database(default=FALLBACK_DATABASE)

    @property
    def current_database_name(self) -> str:
        return self._current_db_name

    async def use_database(self, name: Optional[str] = None) -> AsyncDatabase:
        """Make ``name`` (or the default) the ambient target and return its handle."""
        name = name or ""
        if self._current_db is not None and name == self._current_db_name:
            return self._current_db

        client = await self.get_client()
        self._current_db_name = name
        self._current_db = self._database(client, name)
        logger.info(
            "[CONTEXT] Current database is now %s",
            self._current_db.name,
        )
        return self._current_db

    async def get_handle(self) -> AsyncDatabase:
        if self._current_db is None:
            client = await self.get_client()
            # another caller may have filled it while we waited
            if self._current_db is None:
                self._current_db = self._database(client, self._current_db_name)
        return self._current_db

    async def database_for(self, name: Optional[str] = None) -> AsyncDatabase:
        """Handle for ``name`` without changing the ambient target."""
        if not name:
            return await self.get_handle()
        client = await self.get_client()
        return client[name]

    def reset(self) -> None:
        self._current_db = None

    # ---------------------- CLUSTER LISTING ----------------------

    async def list_databases(self) -> List[str]:
        """Database names on the cluster, minus the internal ones."""
        client = await self.get_client()
        names = await client.list_database_names()
        return [name for name in names if name not in HIDDEN_DATABASES]

    async def list_collections(self, database_name: str) -> List[str]:
        db = await self.database_for(database_name)
        names = await db.list_collection_names(authorizedCollections=True)
        logger.info(
            "[CONTEXT] %d collection(s) in database %s", len(names), db.name,
        )
        return names
