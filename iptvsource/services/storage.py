"""
SQLite-based storage for channels and source descriptors.

Every operation opens its own connection; there is no transaction spanning
several operations, and concurrent writers get last-write-wins behavior.
"""
import aiosqlite
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from iptvsource.config import get_settings
from iptvsource.models.channel import Channel
from iptvsource.models.source import AccountInfo, M3USource, XtreamCredentials, XtreamSource
from iptvsource.services.errors import DuplicateSourceError, SourceNotFoundError, StorageError

logger = logging.getLogger(__name__)

M3U_UPDATABLE = {"name", "url", "last_updated"}
XTREAM_UPDATABLE = {"name", "credentials", "last_updated", "account_info"}


class ChannelStorage:
    """Async SQLite storage for channels, M3U sources and Xtream sources."""

    def __init__(self, db_path: Optional[str] = None):
        settings = get_settings()
        self.db_path = db_path or settings.database_path
        self._ensure_directory()

    def _ensure_directory(self):
        """Create data directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self):
        """Create database tables if they don't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            # seq keeps insertion order; url is the de-duplication key
            await db.execute("""
                CREATE TABLE IF NOT EXISTS channels (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL UNIQUE,
                    id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    logo TEXT,
                    category TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS m3u_sources (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    added_at TIMESTAMP NOT NULL,
                    last_updated TIMESTAMP
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS xtream_sources (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    server_url TEXT NOT NULL,
                    username TEXT NOT NULL,
                    password TEXT NOT NULL,
                    added_at TIMESTAMP NOT NULL,
                    last_updated TIMESTAMP,
                    account_info TEXT
                )
            """)

            await db.execute("CREATE INDEX IF NOT EXISTS idx_channels_category ON channels(category)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_channels_name ON channels(name)")
            await db.commit()

    # ==================== CHANNELS ====================

    @staticmethod
    def _channel_from_row(row) -> Channel:
        return Channel(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            logo=row["logo"],
            category=row["category"],
        )

    async def get_channels(self) -> list[Channel]:
        """All stored channels in insertion order."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT id, name, url, logo, category FROM channels ORDER BY seq")
            rows = await cursor.fetchall()
            return [self._channel_from_row(row) for row in rows]

    async def query_channels(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[Channel], int]:
        """Query channels with filters and pagination."""
        conditions = []
        params = []

        if search:
            conditions.append("name LIKE ?")
            params.append(f"%{search}%")
        if category:
            conditions.append("category = ?")
            params.append(category)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(f"SELECT COUNT(*) FROM channels {where_clause}", params)
            total = (await cursor.fetchone())[0]

            cursor = await db.execute(
                f"""SELECT id, name, url, logo, category FROM channels {where_clause}
                    ORDER BY seq LIMIT ? OFFSET ?""",
                params + [per_page, (page - 1) * per_page],
            )
            rows = await cursor.fetchall()
            return [self._channel_from_row(row) for row in rows], total

    async def get_categories(self) -> list[dict]:
        """Categories with channel counts."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("""
                SELECT category AS name, COUNT(*) AS channel_count
                FROM channels
                WHERE category IS NOT NULL
                GROUP BY category
                ORDER BY category
            """)
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def save_channels(self, channels: list[Channel]):
        """Replace the stored channel list."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM channels")
                await db.executemany(
                    """INSERT OR IGNORE INTO channels (url, id, name, logo, category)
                       VALUES (?, ?, ?, ?, ?)""",
                    [(ch.url, ch.id, ch.name, ch.logo, ch.category) for ch in channels],
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Failed to save channels: {e}")
            raise StorageError("Failed to save channels") from e

    async def add_channels(self, channels: list[Channel]) -> int:
        """
        Append channels whose URL is not stored yet.

        Returns:
            Number of channels actually added
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                before = db.total_changes
                await db.executemany(
                    """INSERT OR IGNORE INTO channels (url, id, name, logo, category)
                       VALUES (?, ?, ?, ?, ?)""",
                    [(ch.url, ch.id, ch.name, ch.logo, ch.category) for ch in channels],
                )
                added = db.total_changes - before
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Failed to add channels: {e}")
            raise StorageError("Failed to save channels") from e

        logger.info(f"Added {added} of {len(channels)} channels (duplicates by URL skipped)")
        return added

    async def clear_channels(self):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM channels")
            await db.commit()

    # ==================== M3U SOURCES ====================

    @staticmethod
    def _m3u_from_row(row) -> M3USource:
        return M3USource(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            added_at=row["added_at"],
            last_updated=row["last_updated"],
        )

    async def get_m3u_sources(self) -> list[M3USource]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM m3u_sources ORDER BY added_at")
            rows = await cursor.fetchall()
            return [self._m3u_from_row(row) for row in rows]

    async def get_m3u_source(self, source_id: str) -> M3USource:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM m3u_sources WHERE id = ?", (source_id,))
            row = await cursor.fetchone()
        if row is None:
            raise SourceNotFoundError("M3U source not found")
        return self._m3u_from_row(row)

    async def add_m3u_source(self, name: str, url: str) -> M3USource:
        """
        Store a new M3U source.

        Raises:
            DuplicateSourceError: if the URL is already stored
        """
        source = M3USource(id=uuid.uuid4().hex[:12], name=name, url=url, added_at=datetime.now())

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT 1 FROM m3u_sources WHERE url = ?", (url,))
            if await cursor.fetchone():
                raise DuplicateSourceError("This M3U URL is already added")

            await db.execute(
                "INSERT INTO m3u_sources (id, name, url, added_at) VALUES (?, ?, ?, ?)",
                (source.id, source.name, source.url, source.added_at.isoformat()),
            )
            await db.commit()

        logger.info(f"Added M3U source {source.id} ({name})")
        return source

    async def remove_m3u_source(self, source_id: str):
        """
        Remove a source. Channels it contributed are kept.

        Raises:
            SourceNotFoundError: if the id is unknown
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM m3u_sources WHERE id = ?", (source_id,))
            await db.commit()
            removed = cursor.rowcount
        if removed == 0:
            raise SourceNotFoundError("M3U source not found")

    async def update_m3u_source(self, source_id: str, **updates) -> M3USource:
        """
        Update fields of an M3U source.

        Raises:
            SourceNotFoundError: if the id is unknown
        """
        source = await self.get_m3u_source(source_id)
        updated = source.model_copy(update={k: v for k, v in updates.items() if k in M3U_UPDATABLE})

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE m3u_sources SET name = ?, url = ?, last_updated = ? WHERE id = ?",
                (
                    updated.name,
                    updated.url,
                    updated.last_updated.isoformat() if updated.last_updated else None,
                    source_id,
                ),
            )
            await db.commit()
        return updated

    # ==================== XTREAM SOURCES ====================

    @staticmethod
    def _xtream_from_row(row) -> XtreamSource:
        account_info = json.loads(row["account_info"]) if row["account_info"] else None
        return XtreamSource(
            id=row["id"],
            name=row["name"],
            credentials=XtreamCredentials(
                server_url=row["server_url"],
                username=row["username"],
                password=row["password"],
            ),
            added_at=row["added_at"],
            last_updated=row["last_updated"],
            account_info=AccountInfo(**account_info) if account_info else None,
        )

    async def get_xtream_sources(self) -> list[XtreamSource]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM xtream_sources ORDER BY added_at")
            rows = await cursor.fetchall()
            return [self._xtream_from_row(row) for row in rows]

    async def get_xtream_source(self, source_id: str) -> XtreamSource:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM xtream_sources WHERE id = ?", (source_id,))
            row = await cursor.fetchone()
        if row is None:
            raise SourceNotFoundError("Xtream source not found")
        return self._xtream_from_row(row)

    async def add_xtream_source(
        self,
        name: str,
        credentials: XtreamCredentials,
        account_info: Optional[AccountInfo] = None,
    ) -> XtreamSource:
        """
        Store a new Xtream account.

        Raises:
            DuplicateSourceError: if the server URL and username pair is already stored
        """
        source = XtreamSource(
            id=uuid.uuid4().hex[:12],
            name=name,
            credentials=credentials,
            added_at=datetime.now(),
            account_info=account_info,
        )

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT 1 FROM xtream_sources WHERE server_url = ? AND username = ?",
                (credentials.server_url, credentials.username),
            )
            if await cursor.fetchone():
                raise DuplicateSourceError("This Xtream account is already added")

            await db.execute(
                """INSERT INTO xtream_sources
                   (id, name, server_url, username, password, added_at, account_info)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    source.id,
                    source.name,
                    credentials.server_url,
                    credentials.username,
                    credentials.password,
                    source.added_at.isoformat(),
                    account_info.model_dump_json() if account_info else None,
                ),
            )
            await db.commit()

        logger.info(f"Added Xtream source {source.id} ({name})")
        return source

    async def remove_xtream_source(self, source_id: str):
        """
        Remove a source. Channels it contributed are kept.

        Raises:
            SourceNotFoundError: if the id is unknown
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM xtream_sources WHERE id = ?", (source_id,))
            await db.commit()
            removed = cursor.rowcount
        if removed == 0:
            raise SourceNotFoundError("Xtream source not found")

    async def update_xtream_source(self, source_id: str, **updates) -> XtreamSource:
        """
        Update fields of an Xtream source.

        Raises:
            SourceNotFoundError: if the id is unknown
        """
        source = await self.get_xtream_source(source_id)
        updated = source.model_copy(update={k: v for k, v in updates.items() if k in XTREAM_UPDATABLE})

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """UPDATE xtream_sources
                   SET name = ?, server_url = ?, username = ?, password = ?,
                       last_updated = ?, account_info = ?
                   WHERE id = ?""",
                (
                    updated.name,
                    updated.credentials.server_url,
                    updated.credentials.username,
                    updated.credentials.password,
                    updated.last_updated.isoformat() if updated.last_updated else None,
                    updated.account_info.model_dump_json() if updated.account_info else None,
                    source_id,
                ),
            )
            await db.commit()
        return updated

    # ==================== ALL ====================

    async def clear_all_sources(self):
        """Delete channels and both source lists. Three separate deletes, not atomic."""
        for table in ("channels", "m3u_sources", "xtream_sources"):
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(f"DELETE FROM {table}")
                await db.commit()
        logger.info("Cleared all sources and channels")

    async def get_stats(self) -> dict:
        async with aiosqlite.connect(self.db_path) as db:
            stats = {}
            for table in ("channels", "m3u_sources", "xtream_sources"):
                cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = (await cursor.fetchone())[0]
            return stats


# Singleton
_storage: Optional[ChannelStorage] = None


async def get_storage() -> ChannelStorage:
    """Get or create storage singleton."""
    global _storage
    if _storage is None:
        _storage = ChannelStorage()
        await _storage.initialize()
    return _storage


def reset_storage():
    """Drop the storage singleton so the next get_storage() reads settings again."""
    global _storage
    _storage = None
