"""SQLite detection log acting as a detection sink."""

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from .interfaces import DetectionSink
from ..models.detection import DetectionEvent, DetectionRecord, Region
from ..utils import ensure_directory_exists
from ..logging_config import get_logger

logger = get_logger("storage_service")


class StorageService(DetectionSink):
    """Persists accepted detections and answers history queries."""

    def __init__(self,
                 database_path: str = "data/detections.db",
                 location: str = "Rice Field",
                 model_name: str = "TFLite"):
        """
        Initialize storage service.

        Args:
            database_path: Path to SQLite database file
            location: Location recorded with every detection
            model_name: Model name written into the detection notes
        """
        self.database_path = database_path
        self.location = location
        self.model_name = model_name
        self.storage_errors = 0

        ensure_directory_exists(os.path.dirname(database_path))
        self._initialize_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.database_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create the detection table if needed."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pest_detections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    pest_type TEXT NOT NULL,
                    confidence INTEGER NOT NULL,
                    timestamp TEXT NOT NULL,
                    location TEXT,
                    image_uri TEXT,
                    notes TEXT,
                    regions TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_detections_timestamp
                ON pest_detections(timestamp)
            """)
        logger.debug(f"Database initialized: {self.database_path}")

    def on_detection(self, event: DetectionEvent) -> None:
        """Store accepted detections; rejected events are not logged."""
        if not event.detected:
            return
        self.save_detection(event)

    def save_detection(self, event: DetectionEvent) -> int:
        """Save an accepted detection event and return its row id."""
        record = DetectionRecord(
            pest_type=event.pest_type,
            confidence=event.confidence or 0,
            timestamp=event.timestamp,
            location=self.location,
            image_uri=event.source_uri,
            notes=f"Detected via {self.model_name} model"
        )
        return self.add_detection(record, regions=list(event.regions))

    def add_detection(self, record: DetectionRecord, regions: Optional[List[Region]] = None) -> int:
        """Insert a detection record."""
        regions_json = json.dumps([region.to_dict() for region in regions or []])
        try:
            with self._connect() as conn:
                cursor = conn.execute("""
                    INSERT INTO pest_detections
                    (pest_type, confidence, timestamp, location, image_uri, notes, regions)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.pest_type,
                    record.confidence,
                    record.timestamp.isoformat(),
                    record.location,
                    record.image_uri,
                    record.notes,
                    regions_json
                ))
                row_id = cursor.lastrowid
        except sqlite3.Error as e:
            self.storage_errors += 1
            logger.error(f"Failed to save detection record: {e}")
            raise

        logger.info(f"Saved {record.pest_type} detection ({record.confidence}%) as #{row_id}")
        return row_id

    def get_recent_detections(self, limit: int = 10) -> List[DetectionRecord]:
        """Most recent detections first."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT id, pest_type, confidence, timestamp, location, image_uri, notes
                FROM pest_detections
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_detections_by_type(self, pest_type: str) -> List[DetectionRecord]:
        """All detections of one pest type, newest first."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT id, pest_type, confidence, timestamp, location, image_uri, notes
                FROM pest_detections
                WHERE pest_type = ?
                ORDER BY timestamp DESC, id DESC
            """, (pest_type,)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_detection_history(self, start_date: datetime, end_date: datetime) -> List[DetectionRecord]:
        """Get detection history for date range."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT id, pest_type, confidence, timestamp, location, image_uri, notes
                FROM pest_detections
                WHERE timestamp BETWEEN ? AND ?
                ORDER BY timestamp DESC, id DESC
            """, (start_date.isoformat(), end_date.isoformat())).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_detection_regions(self, detection_id: int) -> List[Region]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT regions FROM pest_detections WHERE id = ?", (detection_id,)
            ).fetchone()
        if row is None:
            return []
        return [Region(**data) for data in json.loads(row[0])]

    def delete_detection(self, detection_id: int) -> bool:
        """Delete one detection; returns False if it did not exist."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM pest_detections WHERE id = ?", (detection_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted detection #{detection_id}")
        return deleted

    def get_detection_stats(self) -> Dict[str, Any]:
        """Totals, today's count, most common pest and average confidence."""
        today = datetime.now().date().isoformat()
        with self._connect() as conn:
            total = conn.execute("SELECT COUNT(*) FROM pest_detections").fetchone()[0]
            today_count = conn.execute(
                "SELECT COUNT(*) FROM pest_detections WHERE substr(timestamp, 1, 10) = ?", (today,)
            ).fetchone()[0]
            most_common = conn.execute("""
                SELECT pest_type, COUNT(*) AS n
                FROM pest_detections
                GROUP BY pest_type
                ORDER BY n DESC, pest_type ASC
                LIMIT 1
            """).fetchone()
            average = conn.execute("SELECT AVG(confidence) FROM pest_detections").fetchone()[0]

        return {
            "total_detections": total,
            "today_detections": today_count,
            "most_common_pest": most_common[0] if most_common else None,
            "average_confidence": round(average) if average is not None else 0,
        }

    def cleanup_old_data(self, max_age_days: int = 30) -> int:
        """Delete detections older than the given age and return how many went."""
        cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM pest_detections WHERE timestamp < ?", (cutoff,))
            deleted = cursor.rowcount
        logger.info(f"Cleanup completed: {deleted} detection records deleted")
        return deleted

    @staticmethod
    def _row_to_record(row) -> DetectionRecord:
        record_id, pest_type, confidence, timestamp, location, image_uri, notes = row
        return DetectionRecord(
            pest_type=pest_type,
            confidence=confidence,
            timestamp=datetime.fromisoformat(timestamp),
            location=location,
            image_uri=image_uri,
            notes=notes,
            record_id=record_id
        )
