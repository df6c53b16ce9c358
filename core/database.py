# core/database.py

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from core.embedding import embedding_from_bytes, embedding_to_bytes
from core.models import (AnnotationKind, BoundingBox, FaceRecord, Label,
                         MediaItem, ProcessingStage)

logger = logging.getLogger(__name__)


class GalleryDatabase:
    """
    SQLite store for media items and their analysis results.

    Every save_* call is a single transaction that also records a stage
    marker, so a stage is either fully persisted for an item or not at
    all. Readers may see an item with some stages done and others not.
    """

    def __init__(self, db_path: str = "data/gallery.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.RLock()
        self._initialize_database()

    def _initialize_database(self):
        """Create database schema"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute("PRAGMA foreign_keys = ON")

        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS media_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_path TEXT UNIQUE NOT NULL,
                    width INTEGER,
                    height INTEGER,
                    is_video BOOLEAN NOT NULL DEFAULT 0,
                    perceptual_hash TEXT,
                    added_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS face_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    media_id INTEGER NOT NULL,
                    person_id INTEGER,
                    face_bounds TEXT NOT NULL,
                    embedding_vector BLOB NOT NULL,
                    confidence FLOAT,
                    created_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (media_id) REFERENCES media_items(id) ON DELETE CASCADE
                )
            """)

            # kind separates object/scene labels from extracted text
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS annotations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    media_id INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    text TEXT NOT NULL,
                    confidence FLOAT NOT NULL,
                    created_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (media_id) REFERENCES media_items(id) ON DELETE CASCADE
                )
            """)

            # Completed stages, including ones that produced no results
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS stage_markers (
                    media_id INTEGER NOT NULL,
                    stage TEXT NOT NULL,
                    completed_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (media_id, stage),
                    FOREIGN KEY (media_id) REFERENCES media_items(id) ON DELETE CASCADE
                )
            """)

            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_perceptual_hash ON media_items(perceptual_hash)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_faces_media ON face_records(media_id)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_faces_person ON face_records(person_id)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_annotations_media ON annotations(media_id)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_annotations_text ON annotations(text)"
            )

    def _fetch(self, query: str, params=(), one: bool = False):
        """Run a read under the write lock; saves in progress stay invisible"""
        with self._lock:
            cursor = self.conn.execute(query, params)
            return cursor.fetchone() if one else cursor.fetchall()

    # Media items

    def add_item(self, file_path: str, width: Optional[int] = None,
                 height: Optional[int] = None, is_video: bool = False) -> int:
        """Register a media file; returns the existing id if already known"""
        with self._lock, self.conn:
            self.conn.execute("""
                INSERT OR IGNORE INTO media_items (file_path, width, height, is_video)
                VALUES (?, ?, ?, ?)
            """, (file_path, width, height, int(is_video)))
            row = self.conn.execute(
                "SELECT id FROM media_items WHERE file_path = ?", (file_path,)
            ).fetchone()
        return row[0]

    def add_items(self, items: Iterable[MediaItem]) -> List[int]:
        return [self.add_item(item.path, item.width, item.height, item.is_video)
                for item in items]

    def get_item(self, item_id: int) -> Optional[MediaItem]:
        row = self._fetch("""
            SELECT id, file_path, width, height, is_video, perceptual_hash
            FROM media_items WHERE id = ?
        """, (item_id,), one=True)
        return self._row_to_item(row) if row else None

    def get_item_by_path(self, file_path: str) -> Optional[MediaItem]:
        row = self._fetch("""
            SELECT id, file_path, width, height, is_video, perceptual_hash
            FROM media_items WHERE file_path = ?
        """, (file_path,), one=True)
        return self._row_to_item(row) if row else None

    def list_all_items(self) -> List[MediaItem]:
        """All items in ascending id order"""
        rows = self._fetch("""
            SELECT id, file_path, width, height, is_video, perceptual_hash
            FROM media_items ORDER BY id
        """)
        return [self._row_to_item(row) for row in rows]

    def items_with_hash(self) -> List[MediaItem]:
        rows = self._fetch("""
            SELECT id, file_path, width, height, is_video, perceptual_hash
            FROM media_items WHERE perceptual_hash IS NOT NULL ORDER BY id
        """)
        return [self._row_to_item(row) for row in rows]

    @staticmethod
    def _row_to_item(row) -> MediaItem:
        return MediaItem(
            id=row[0],
            path=row[1],
            width=row[2],
            height=row[3],
            is_video=bool(row[4]),
            perceptual_hash=row[5]
        )

    # Stage results

    def get_stage_result(self, item_id: int, stage: ProcessingStage) -> bool:
        """True when the stage already has results or completed for the item"""
        with self._lock:
            marker = self.conn.execute(
                "SELECT 1 FROM stage_markers WHERE media_id = ? AND stage = ?",
                (item_id, stage.value)
            ).fetchone()
            if marker:
                return True

            if stage is ProcessingStage.DUPLICATES:
                row = self.conn.execute(
                    "SELECT perceptual_hash FROM media_items WHERE id = ?", (item_id,)
                ).fetchone()
                return bool(row and row[0])
            if stage is ProcessingStage.FACES:
                query = "SELECT 1 FROM face_records WHERE media_id = ? LIMIT 1"
                return self.conn.execute(query, (item_id,)).fetchone() is not None

            kind = AnnotationKind.TEXT if stage is ProcessingStage.TEXT else AnnotationKind.LABEL
            row = self.conn.execute(
                "SELECT 1 FROM annotations WHERE media_id = ? AND kind = ? LIMIT 1",
                (item_id, kind.value)
            ).fetchone()
            return row is not None

    def _mark_stage(self, item_id: int, stage: ProcessingStage):
        self.conn.execute("""
            INSERT OR REPLACE INTO stage_markers (media_id, stage) VALUES (?, ?)
        """, (item_id, stage.value))

    def save_hash(self, item_id: int, perceptual_hash: str):
        with self._lock, self.conn:
            cursor = self.conn.execute(
                "UPDATE media_items SET perceptual_hash = ? WHERE id = ?",
                (str(perceptual_hash), item_id)
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Unknown media item: {item_id}")
            self._mark_stage(item_id, ProcessingStage.DUPLICATES)

    def save_faces(self, item_id: int, faces: List[FaceRecord]):
        """Replace all face records of an item"""
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM face_records WHERE media_id = ?", (item_id,))
            self.conn.executemany("""
                INSERT INTO face_records
                (media_id, person_id, face_bounds, embedding_vector, confidence)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (item_id, face.person_id, face.bounding_box.to_string(),
                 embedding_to_bytes(face.embedding), face.confidence)
                for face in faces
            ])
            self._mark_stage(item_id, ProcessingStage.FACES)

    def save_labels(self, item_id: int, labels: List[Label], replace: bool = False):
        """
        Append object/scene labels to an item.

        replace=True first drops the item's existing labels, which is how
        forced reprocessing overwrites instead of duplicating rows.
        """
        self._insert_annotations(item_id, labels, AnnotationKind.LABEL,
                                 ProcessingStage.LABELS, replace)

    def save_text(self, item_id: int, texts: List[Label], replace: bool = False):
        """Append extracted-text annotations to an item"""
        self._insert_annotations(item_id, texts, AnnotationKind.TEXT,
                                 ProcessingStage.TEXT, replace)

    def _insert_annotations(self, item_id: int, labels: List[Label],
                            kind: AnnotationKind, stage: ProcessingStage,
                            replace: bool):
        with self._lock, self.conn:
            if replace:
                self.conn.execute(
                    "DELETE FROM annotations WHERE media_id = ? AND kind = ?",
                    (item_id, kind.value)
                )
            self.conn.executemany("""
                INSERT INTO annotations (media_id, kind, text, confidence)
                VALUES (?, ?, ?, ?)
            """, [(item_id, kind.value, label.text, float(label.confidence))
                  for label in labels])
            self._mark_stage(item_id, stage)

    # Queries

    def get_faces(self, item_id: int) -> List[FaceRecord]:
        rows = self._fetch("""
            SELECT id, media_id, person_id, face_bounds, embedding_vector, confidence
            FROM face_records WHERE media_id = ? ORDER BY id
        """, (item_id,))
        return [self._row_to_face(row) for row in rows]

    def get_unassigned_faces(self) -> List[FaceRecord]:
        rows = self._fetch("""
            SELECT id, media_id, person_id, face_bounds, embedding_vector, confidence
            FROM face_records WHERE person_id IS NULL ORDER BY id
        """)
        return [self._row_to_face(row) for row in rows]

    def assign_face_to_person(self, face_id: int, person_id: Optional[int]):
        with self._lock, self.conn:
            self.conn.execute(
                "UPDATE face_records SET person_id = ? WHERE id = ?",
                (person_id, face_id)
            )

    @staticmethod
    def _row_to_face(row) -> FaceRecord:
        return FaceRecord(
            id=row[0],
            media_id=row[1],
            person_id=row[2],
            bounding_box=BoundingBox.from_string(row[3]),
            embedding=embedding_from_bytes(row[4]),
            confidence=row[5] if row[5] is not None else 0.0
        )

    def get_labels(self, item_id: int,
                   kind: Optional[AnnotationKind] = None) -> List[Label]:
        query = "SELECT media_id, kind, text, confidence FROM annotations WHERE media_id = ?"
        params = [item_id]
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind.value)
        query += " ORDER BY id"

        return [
            Label(text=row[2], confidence=row[3], kind=AnnotationKind(row[1]),
                  media_id=row[0])
            for row in self._fetch(query, params)
        ]

    def get_distinct_labels(self) -> List[str]:
        rows = self._fetch("""
            SELECT DISTINCT text FROM annotations WHERE kind = ? ORDER BY text
        """, (AnnotationKind.LABEL.value,))
        return [row[0] for row in rows]

    def get_media_with_label(self, label: str) -> List[int]:
        """Media ids carrying a label, highest confidence first"""
        rows = self._fetch("""
            SELECT media_id, MAX(confidence) AS best FROM annotations
            WHERE kind = ? AND text = ?
            GROUP BY media_id ORDER BY best DESC, media_id
        """, (AnnotationKind.LABEL.value, label))
        return [row[0] for row in rows]

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
