"""
PostgreSQL storage for grade records.

The only schema step is creating the grades table when it is missing.
Every operation is timed through the metrics emitter handed to the
repository (layer=db).
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import HTTPException
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from src.schemas import Grade, GradeIn
from src.services.metrics import NullMetrics

logger = logging.getLogger(__name__)

_COLUMNS = "id, student_name, email, class, grade"


def _to_grade(row: Dict[str, Any]) -> Grade:
    return Grade(
        id=row["id"],
        student_name=row["student_name"],
        email=row["email"],
        class_name=row["class"],
        grade=row["grade"],
    )


class GradeRepository:
    """CRUD and aggregate queries over the grades table."""

    def __init__(self, db_config, metrics=None, connection_pool=None):
        self._db_config = db_config
        self._metrics = metrics or NullMetrics()
        self._pool: Optional[pool.ThreadedConnectionPool] = connection_pool

    def _get_pool(self) -> pool.ThreadedConnectionPool:
        """Get or create the connection pool."""
        if self._pool is None:
            cfg = self._db_config
            try:
                self._pool = pool.ThreadedConnectionPool(
                    minconn=cfg.pool_min,
                    maxconn=cfg.pool_max,
                    host=cfg.host,
                    port=cfg.port,
                    database=cfg.database,
                    user=cfg.user,
                    password=cfg.password,
                )
                logger.info(f"Database connection pool created: {cfg.host}:{cfg.port}/{cfg.database}")
            except Exception as e:
                logger.error(f"Failed to create database connection pool: {e}")
                raise HTTPException(
                    status_code=503,
                    detail=f"Failed to connect to database: {str(e)}",
                )
        return self._pool

    @contextmanager
    def _cursor(self, operation: str) -> Iterator[Any]:
        """Borrow a connection, commit on success and roll back on failure."""
        conn_pool = self._get_pool()
        conn = conn_pool.getconn()
        try:
            with self._metrics.timed(f"{operation}_time", {"layer": "db", "operation": operation}):
                cursor = conn.cursor(cursor_factory=RealDictCursor)
                yield cursor
            conn.commit()
        except HTTPException:
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            logger.error(f"Database operation {operation} failed: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Database operation failed: {str(e)}")
        finally:
            conn_pool.putconn(conn)

    def initialize_schema(self) -> None:
        """Create the grades table if it doesn't exist."""
        with self._cursor("initialize_schema") as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS grades (
                    id BIGSERIAL PRIMARY KEY,
                    student_name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    class TEXT NOT NULL,
                    grade INTEGER NOT NULL
                );
            """)
        logger.info("Database schema initialized successfully")

    def list_grades(self) -> List[Grade]:
        with self._cursor("get_grades") as cursor:
            cursor.execute(f"SELECT {_COLUMNS} FROM grades ORDER BY id")
            rows = cursor.fetchall()
        return [_to_grade(row) for row in rows]

    def get_grade(self, grade_id: int) -> Optional[Grade]:
        with self._cursor("get_grades_id") as cursor:
            cursor.execute(f"SELECT {_COLUMNS} FROM grades WHERE id = %s", (grade_id,))
            row = cursor.fetchone()
        return _to_grade(row) if row else None

    def create_grade(self, data: GradeIn) -> Grade:
        with self._cursor("post_grades") as cursor:
            cursor.execute(
                f"""
                INSERT INTO grades (student_name, email, class, grade)
                VALUES (%s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (data.student_name, data.email, data.class_name, data.grade),
            )
            row = cursor.fetchone()
        grade = _to_grade(row)
        logger.info(f"Created grade {grade.id} for {grade.student_name}")
        return grade

    def update_grade(self, grade_id: int, data: GradeIn) -> Optional[Grade]:
        with self._cursor("put_grades_id") as cursor:
            cursor.execute(
                f"""
                UPDATE grades
                SET student_name = %s, email = %s, class = %s, grade = %s
                WHERE id = %s
                RETURNING {_COLUMNS}
                """,
                (data.student_name, data.email, data.class_name, data.grade, grade_id),
            )
            row = cursor.fetchone()
        return _to_grade(row) if row else None

    def delete_grade(self, grade_id: int) -> bool:
        with self._cursor("delete_grades_id") as cursor:
            cursor.execute("DELETE FROM grades WHERE id = %s", (grade_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted grade {grade_id}")
        return deleted

    def average_grade(self) -> float:
        with self._cursor("get_grades_avg") as cursor:
            cursor.execute("SELECT COALESCE(AVG(grade), 0) AS average FROM grades")
            row = cursor.fetchone()
        return float(row["average"]) if row else 0.0

    def ping(self) -> None:
        """Raise if the database cannot answer a trivial query."""
        conn_pool = self._get_pool()
        conn = conn_pool.getconn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        finally:
            conn_pool.putconn(conn)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Database connection pool closed")
