from __future__ import annotations

import re
from typing import List

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Request, status

from src.schemas import AverageResponse, Grade, GradeIn, MessageResponse

router = APIRouter(prefix="/api/v1/grades", tags=["Grades"])

GRADE_ID_PATTERN = re.compile(r"[+-]?[0-9]+")


def get_repository(request: Request):
    return request.app.state.repository


def get_metrics(request: Request):
    return request.app.state.metrics


def _api_tags(operation: str) -> dict:
    return {"layer": "api", "operation": operation}


def _parse_grade_id(raw: str) -> int:
    # int() alone would also take "1_000" and surrounding whitespace
    if not GRADE_ID_PATTERN.fullmatch(raw):
        raise HTTPException(status_code=400, detail="Invalid grade ID")
    grade_id = int(raw)
    if grade_id < 0:
        raise HTTPException(status_code=400, detail="ID must be a positive number")
    return grade_id


def _require_grade(repository, grade_id: int) -> Grade:
    grade = repository.get_grade(grade_id)
    if grade is None:
        raise HTTPException(status_code=404, detail="Grade not found")
    return grade


@router.get("", response_model=List[Grade], summary="List all grades")
def list_grades(repository=Depends(get_repository), metrics=Depends(get_metrics)) -> List[Grade]:
    with metrics.timed("get_grades_time", _api_tags("get_grades")):
        return repository.list_grades()


# Declared before /{grade_id} so "avg" is not taken for an id
@router.get("/avg", response_model=AverageResponse, summary="Average of all grades")
def average_grade(repository=Depends(get_repository), metrics=Depends(get_metrics)) -> AverageResponse:
    with metrics.timed("get_grades_avg_time", _api_tags("get_grades_avg")):
        return AverageResponse(average=repository.average_grade())


@router.get("/{grade_id}", response_model=Grade, summary="Get a grade by id")
def get_grade(
    grade_id: str = Path(..., description="Grade identifier."),
    repository=Depends(get_repository),
    metrics=Depends(get_metrics),
) -> Grade:
    with metrics.timed("get_grades_id_time", _api_tags("get_grades_id")):
        return _require_grade(repository, _parse_grade_id(grade_id))


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=Grade,
    summary="Create a grade",
)
def create_grade(
    payload: GradeIn = Body(...),
    repository=Depends(get_repository),
    metrics=Depends(get_metrics),
) -> Grade:
    with metrics.timed("post_grades_time", _api_tags("post_grades")):
        return repository.create_grade(payload)


@router.put("/{grade_id}", response_model=Grade, summary="Update a grade")
def update_grade(
    grade_id: str = Path(..., description="Grade identifier."),
    payload: GradeIn = Body(...),
    repository=Depends(get_repository),
    metrics=Depends(get_metrics),
) -> Grade:
    with metrics.timed("put_grades_id_time", _api_tags("put_grades_id")):
        parsed_id = _parse_grade_id(grade_id)
        _require_grade(repository, parsed_id)
        updated = repository.update_grade(parsed_id, payload)
        if updated is None:
            # Deleted between the lookup and the update
            raise HTTPException(status_code=404, detail="Grade not found")
        return updated


@router.delete("/{grade_id}", response_model=MessageResponse, summary="Delete a grade")
def delete_grade(
    grade_id: str = Path(..., description="Grade identifier."),
    repository=Depends(get_repository),
    metrics=Depends(get_metrics),
) -> MessageResponse:
    with metrics.timed("delete_grades_id_time", _api_tags("delete_grades_id")):
        parsed_id = _parse_grade_id(grade_id)
        _require_grade(repository, parsed_id)
        if not repository.delete_grade(parsed_id):
            raise HTTPException(status_code=404, detail="Grade not found")
        return MessageResponse(message="Grade deleted")
