"""
Shared fakes and helpers for grades service tests
"""
import threading
from typing import Dict, List, Optional

from fastapi import HTTPException
from fastapi.testclient import TestClient

from src.config import Configuration
from src.index import create_app
from src.schemas import Grade, GradeIn
from src.services.log_shipper import LogEntry
from src.services.metrics import NullMetrics


class FakeGradeRepository:
    """In-memory stand-in for GradeRepository"""

    def __init__(self):
        self.grades: Dict[int, Grade] = {}
        self.next_id = 1
        self.ping_error: Optional[Exception] = None
        self.fail_with: Optional[HTTPException] = None
        self.closed = False

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def list_grades(self) -> List[Grade]:
        self._check()
        return [self.grades[k] for k in sorted(self.grades)]

    def get_grade(self, grade_id: int) -> Optional[Grade]:
        self._check()
        return self.grades.get(grade_id)

    def create_grade(self, data: GradeIn) -> Grade:
        self._check()
        grade = Grade(id=self.next_id, **data.model_dump())
        self.grades[grade.id] = grade
        self.next_id += 1
        return grade

    def update_grade(self, grade_id: int, data: GradeIn) -> Optional[Grade]:
        self._check()
        if grade_id not in self.grades:
            return None
        grade = Grade(id=grade_id, **data.model_dump())
        self.grades[grade_id] = grade
        return grade

    def delete_grade(self, grade_id: int) -> bool:
        self._check()
        return self.grades.pop(grade_id, None) is not None

    def average_grade(self) -> float:
        self._check()
        if not self.grades:
            return 0.0
        return sum(g.grade for g in self.grades.values()) / len(self.grades)

    def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    def close(self) -> None:
        self.closed = True


class RecordingSink:
    """Log sink that records entries and can fail on chosen messages"""

    def __init__(self, fail_on=()):
        self.entries: List[LogEntry] = []
        self.attempts: List[str] = []
        self.fail_on = set(fail_on)
        self._cond = threading.Condition()

    def send(self, entry: LogEntry) -> None:
        with self._cond:
            self.attempts.append(entry.message)
            if entry.message in self.fail_on:
                self._cond.notify_all()
                raise RuntimeError(f"sink rejected {entry.message}")
            self.entries.append(entry)
            self._cond.notify_all()

    @property
    def messages(self) -> List[str]:
        with self._cond:
            return [e.message for e in self.entries]

    def wait_for_attempts(self, count: int, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.attempts) >= count, timeout)


def make_config() -> Configuration:
    config = Configuration()
    config.logs.enabled = False
    config.metrics.enabled = False
    return config


def make_client(repository=None, metrics=None, shipper=None) -> TestClient:
    """Build an app around fakes; use as a context manager to run the lifespan"""
    app = create_app(
        make_config(),
        repository=repository or FakeGradeRepository(),
        metrics=metrics or NullMetrics(),
        shipper=shipper,
    )
    return TestClient(app)


SAMPLE_GRADE = {
    "student_name": "Ada Lovelace",
    "email": "ada@example.com",
    "class": "Mathematics",
    "grade": 95,
}
