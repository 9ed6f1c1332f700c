# database.py - Async MongoDB connection manager for the rentals service

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError, OperationFailure
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from datetime import datetime, timezone
import asyncio
import logging
import os
from dotenv import load_dotenv

logger = logging.getLogger(__name__)
load_dotenv()


@dataclass
class AsyncDatabaseConfig:
    """Async MongoDB configuration"""
    mongo_uri: str
    database_name: str
    max_pool_size: int = 50
    min_pool_size: int = 0
    server_selection_timeout_ms: int = 3000
    connect_timeout_ms: int = 3000
    socket_timeout_ms: int = 20000

    @classmethod
    def from_env(cls) -> "AsyncDatabaseConfig":
        return cls(
            mongo_uri=os.getenv("MONGO_URI", ""),
            database_name=os.getenv("MONGO_DATABASE", "rentals"),
            max_pool_size=int(os.getenv("MONGO_MAX_POOL_SIZE", "50")),
            min_pool_size=int(os.getenv("MONGO_MIN_POOL_SIZE", "0")),
            server_selection_timeout_ms=int(os.getenv("MONGO_SERVER_TIMEOUT_MS", "3000")),
            connect_timeout_ms=int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "3000")),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.mongo_uri)

    def validate(self) -> None:
        if not self.mongo_uri:
            raise ValueError("MongoDB URI cannot be empty")
        if not self.database_name:
            raise ValueError("Database name cannot be empty")
        if self.max_pool_size < 1 or self.max_pool_size < self.min_pool_size:
            raise ValueError("max_pool_size must be >= max(1, min_pool_size)")


class AsyncDatabaseManager:
    """
    Single motor client shared by the app. ``initialize`` is called from the
    FastAPI lifespan; when it fails the app runs on the local JSON store.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._config: Optional[AsyncDatabaseConfig] = None

    @property
    def is_initialized(self) -> bool:
        return self._database is not None

    async def initialize(self, config: Optional[AsyncDatabaseConfig] = None) -> AsyncIOMotorDatabase:
        """
        Connect and ping the server.

        Raises:
            ValueError: invalid configuration
            ConnectionFailure: server unreachable within the selection timeout
        """
        async with self._lock:
            if self._database is not None:
                return self._database

            config = config or AsyncDatabaseConfig.from_env()
            config.validate()
            client = AsyncIOMotorClient(
                config.mongo_uri,
                maxPoolSize=config.max_pool_size,
                minPoolSize=config.min_pool_size,
                serverSelectionTimeoutMS=config.server_selection_timeout_ms,
                connectTimeoutMS=config.connect_timeout_ms,
                socketTimeoutMS=config.socket_timeout_ms,
                uuidRepresentation="standard",
            )
            try:
                await asyncio.wait_for(
                    client.admin.command("ping"),
                    timeout=config.server_selection_timeout_ms / 1000 + 1,
                )
            except (ConnectionFailure, ServerSelectionTimeoutError, asyncio.TimeoutError) as e:
                client.close()
                logger.error(f"❌ Failed to connect to MongoDB: {e}")
                raise ConnectionFailure(f"Could not connect to MongoDB: {e}") from e

            self._client = client
            self._config = config
            self._database = client[config.database_name]
            logger.info(f"✅ Connected to MongoDB: {config.database_name}")
            return self._database

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._database is None:
            raise RuntimeError("AsyncDatabaseManager not initialized. Call `await initialize()` first.")
        return self._database

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        return self.database[name]

    async def health_check(self) -> Dict[str, Any]:
        timestamp = datetime.now(timezone.utc).isoformat()
        if self._client is None:
            return {"status": "unavailable", "mode": "local", "timestamp": timestamp}
        try:
            started = datetime.now()
            await asyncio.wait_for(self._client.admin.command("ping"), timeout=5.0)
            latency = (datetime.now() - started).total_seconds() * 1000
            return {
                "status": "healthy",
                "mode": "mongo",
                "latency_ms": round(latency, 2),
                "database": self._config.database_name,
                "timestamp": timestamp,
            }
        except (asyncio.TimeoutError, ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "mode": "mongo", "error": str(e), "timestamp": timestamp}

    async def create_indexes(self, indexes_config: Dict[str, List[dict]]) -> None:
        """
        Create indexes, e.g.
            {"invoices": [{"keys": [("number", 1)], "unique": True}]}
        Failing to create a unique index is fatal: it would leave issuance unguarded.
        """
        for collection_name, indexes in indexes_config.items():
            collection = self.database[collection_name]
            for index_def in indexes:
                options = dict(index_def)
                keys = options.pop("keys")
                try:
                    await collection.create_index(keys, **options)
                    logger.info(f"✅ Index on {collection_name}: {keys}")
                except OperationFailure as e:
                    logger.error(f"❌ Failed to create index on {collection_name}: {e}")
                    if options.get("unique"):
                        raise

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                logger.info("Database connection closed")
            self._client = None
            self._database = None
            self._config = None


db_manager = AsyncDatabaseManager()
