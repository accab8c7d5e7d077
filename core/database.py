# core/database.py

import sqlite3
import time
import uuid
from pathlib import Path
from typing import Optional, List, Dict, Tuple

from core.models import MediaKind, MediaRecord

_ORDER_CLAUSES = {
    'recent': "ORDER BY added_at DESC, id ASC",
    'id': "ORDER BY id ASC",
}


class MediaDatabase:
    """
    SQLite store for media records, perceptual fingerprints and tags
    """

    def __init__(self, db_path: str = "data/media.db"):
        self.db_path = db_path
        self.conn = None
        self._initialize_database()

    def _initialize_database(self):
        """Create database schema"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute("PRAGMA foreign_keys = ON")

        cursor = self.conn.cursor()

        # Main media table
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS media (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                path TEXT UNIQUE NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                duration_sec REAL,
                added_at INTEGER NOT NULL,
                phash TEXT,
                content_hash TEXT,
                content_hash_failed INTEGER NOT NULL DEFAULT 0,
                unusable INTEGER NOT NULL DEFAULT 0,
                rating INTEGER,
                view_count INTEGER NOT NULL DEFAULT 0
            )
        """)

        # Tags
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS media_tags (
                media_id TEXT NOT NULL,
                tag_id INTEGER NOT NULL,
                PRIMARY KEY (media_id, tag_id),
                FOREIGN KEY (media_id) REFERENCES media(id) ON DELETE CASCADE,
                FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
            )
        """)

        # Indexing for faster queries
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_media_phash ON media(phash)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_media_content_hash ON media(content_hash)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_media_added ON media(added_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_media_tags_tag ON media_tags(tag_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_media_size ON media(size)
        """)

        self._add_missing_columns(cursor)
        self.conn.commit()

    def _add_missing_columns(self, cursor):
        """Bring databases created before newer columns existed up to date"""
        cursor.execute("PRAGMA table_info(media)")
        existing = {row[1] for row in cursor.fetchall()}
        if 'content_hash_failed' not in existing:
            cursor.execute(
                "ALTER TABLE media ADD COLUMN content_hash_failed INTEGER NOT NULL DEFAULT 0"
            )

    def _row_to_record(self, row: Tuple, columns: List[str]) -> MediaRecord:
        data = dict(zip(columns, row))
        return MediaRecord(
            id=data['id'],
            kind=MediaKind(data['kind']),
            path=data['path'],
            duration_sec=data['duration_sec'],
            fingerprint=data['phash'],
            content_hash=data['content_hash'],
            size=data['size'] or 0,
            added_at=data['added_at'],
            unusable=bool(data['unusable']),
            rating=data['rating'],
            view_count=data['view_count'] or 0
        )

    def _fetch_records(self, query: str, params: tuple = ()) -> List[MediaRecord]:
        cursor = self.conn.cursor()
        cursor.execute(query, params)
        rows = cursor.fetchall()
        columns = [desc[0] for desc in cursor.description]
        return [self._row_to_record(row, columns) for row in rows]

    # ------------------------------------------------------------------
    # Records

    def add_media(self, path: str, kind, size: int = 0,
                  duration_sec: Optional[float] = None,
                  media_id: Optional[str] = None,
                  added_at: Optional[int] = None,
                  fingerprint: Optional[str] = None,
                  content_hash: Optional[str] = None,
                  rating: Optional[int] = None,
                  view_count: int = 0) -> str:
        """Add a media record and return its id"""
        media_id = media_id or uuid.uuid4().hex
        if added_at is None:
            added_at = int(time.time() * 1000)

        self.conn.execute("""
            INSERT INTO media
            (id, kind, path, size, duration_sec, added_at, phash, content_hash,
             rating, view_count)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            media_id,
            MediaKind(kind).value,
            path,
            size,
            duration_sec,
            added_at,
            fingerprint,
            content_hash,
            rating,
            view_count
        ))

        self.conn.commit()
        return media_id

    def get_media_by_id(self, media_id: str) -> Optional[MediaRecord]:
        records = self._fetch_records("SELECT * FROM media WHERE id = ?", (media_id,))
        return records[0] if records else None

    def get_media_by_path(self, path: str) -> Optional[MediaRecord]:
        records = self._fetch_records("SELECT * FROM media WHERE path = ?", (path,))
        return records[0] if records else None

    def get_media_many(self, media_ids: List[str]) -> List[MediaRecord]:
        if not media_ids:
            return []
        placeholders = ','.join('?' for _ in media_ids)
        return self._fetch_records(
            f"SELECT * FROM media WHERE id IN ({placeholders})", tuple(media_ids)
        )

    def delete_media(self, media_id: str):
        """Delete a record; its fingerprint and tag links go with it"""
        self.conn.execute("DELETE FROM media WHERE id = ?", (media_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Fingerprints

    def list_fingerprinted(self, order: str = 'recent') -> List[MediaRecord]:
        """All usable records that carry a fingerprint, in a stable order"""
        if order not in _ORDER_CLAUSES:
            raise ValueError(f"Unknown order: {order}")
        return self._fetch_records(f"""
            SELECT * FROM media
            WHERE phash IS NOT NULL AND phash != '' AND unusable = 0
            {_ORDER_CLAUSES[order]}
        """)

    def list_unhashed(self, limit: int = 100) -> List[MediaRecord]:
        """Usable records still lacking a fingerprint, most recent first"""
        return self._fetch_records("""
            SELECT * FROM media
            WHERE (phash IS NULL OR phash = '') AND unusable = 0
            ORDER BY added_at DESC, id ASC
            LIMIT ?
        """, (limit,))

    def set_fingerprint(self, media_id: str, fingerprint: str):
        self.conn.execute(
            "UPDATE media SET phash = ? WHERE id = ?", (fingerprint, media_id)
        )
        self.conn.commit()

    def mark_unusable(self, media_id: str):
        self.conn.execute("UPDATE media SET unusable = 1 WHERE id = ?", (media_id,))
        self.conn.commit()

    def clear_unusable(self, media_id: str):
        self.conn.execute("UPDATE media SET unusable = 0 WHERE id = ?", (media_id,))
        self.conn.commit()

    def count_media(self) -> int:
        """Number of usable records"""
        cursor = self.conn.execute("SELECT COUNT(*) FROM media WHERE unusable = 0")
        return cursor.fetchone()[0]

    def count_fingerprinted(self) -> int:
        cursor = self.conn.execute("""
            SELECT COUNT(*) FROM media
            WHERE phash IS NOT NULL AND phash != '' AND unusable = 0
        """)
        return cursor.fetchone()[0]

    # ------------------------------------------------------------------
    # Content hashes

    def set_content_hash(self, media_id: str, content_hash: str):
        self.conn.execute(
            "UPDATE media SET content_hash = ?, content_hash_failed = 0 WHERE id = ?",
            (content_hash, media_id)
        )
        self.conn.commit()

    def mark_content_hash_failed(self, media_id: str):
        """Skip a record whose file could not be read in later hashing passes"""
        self.conn.execute(
            "UPDATE media SET content_hash_failed = 1 WHERE id = ?", (media_id,)
        )
        self.conn.commit()

    def clear_content_hashes(self) -> int:
        """Forget every content hash and hashing failure; returns records touched"""
        cursor = self.conn.execute("""
            UPDATE media SET content_hash = NULL, content_hash_failed = 0
            WHERE content_hash IS NOT NULL OR content_hash_failed = 1
        """)
        self.conn.commit()
        return cursor.rowcount

    def list_missing_content_hash(self, limit: int = 100,
                                  max_size: Optional[int] = None) -> List[MediaRecord]:
        query = "SELECT * FROM media WHERE content_hash IS NULL AND content_hash_failed = 0"
        params: list = []
        if max_size is not None:
            query += " AND size < ?"
            params.append(max_size)
        query += " ORDER BY added_at DESC, id ASC LIMIT ?"
        params.append(limit)
        return self._fetch_records(query, tuple(params))

    def group_by_content_hash(self) -> Dict[str, List[MediaRecord]]:
        """Records sharing a content hash with at least one other record"""
        records = self._fetch_records("""
            SELECT * FROM media
            WHERE content_hash IN (
                SELECT content_hash FROM media
                WHERE content_hash IS NOT NULL
                GROUP BY content_hash
                HAVING COUNT(*) > 1
            )
            ORDER BY content_hash ASC, added_at ASC, id ASC
        """)

        groups: Dict[str, List[MediaRecord]] = {}
        for record in records:
            groups.setdefault(record.content_hash, []).append(record)
        return groups

    def group_by_size(self) -> Dict[int, List[MediaRecord]]:
        """Records of a known, non-zero size shared with at least one other record"""
        records = self._fetch_records("""
            SELECT * FROM media
            WHERE size IN (
                SELECT size FROM media
                WHERE size > 0
                GROUP BY size
                HAVING COUNT(*) > 1
            )
            ORDER BY size ASC, added_at ASC, id ASC
        """)

        groups: Dict[int, List[MediaRecord]] = {}
        for record in records:
            groups.setdefault(record.size, []).append(record)
        return groups

    def group_by_filename(self) -> Dict[str, List[MediaRecord]]:
        """Records whose file names match case-insensitively, keyed by lowercase name"""
        records = self._fetch_records("SELECT * FROM media ORDER BY added_at ASC, id ASC")

        groups: Dict[str, List[MediaRecord]] = {}
        for record in records:
            groups.setdefault(Path(record.path).name.lower(), []).append(record)
        return {name: group for name, group in groups.items() if len(group) > 1}

    # ------------------------------------------------------------------
    # Tags

    def add_tag(self, media_id: str, tag_name: str) -> int:
        """Attach a tag (created on first use) to a record; returns the tag id"""
        cursor = self.conn.cursor()
        cursor.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (tag_name,))
        cursor.execute("SELECT id FROM tags WHERE name = ?", (tag_name,))
        tag_id = cursor.fetchone()[0]
        cursor.execute("""
            INSERT OR IGNORE INTO media_tags (media_id, tag_id) VALUES (?, ?)
        """, (media_id, tag_id))
        self.conn.commit()
        return tag_id

    def tags_of(self, media_id: str) -> List[int]:
        cursor = self.conn.execute("""
            SELECT tag_id FROM media_tags WHERE media_id = ? ORDER BY tag_id
        """, (media_id,))
        return [row[0] for row in cursor.fetchall()]

    def items_sharing_tag(self, tag_id: int) -> List[str]:
        cursor = self.conn.execute("""
            SELECT media_id FROM media_tags WHERE tag_id = ? ORDER BY media_id
        """, (tag_id,))
        return [row[0] for row in cursor.fetchall()]

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
