"""
UoM SIS Portal API client

Read-only access to the portal's JSON endpoints through the session owned by
an AuthSessionManager, plus helpers for the loosely shaped records the portal
returns.
"""

from __future__ import annotations

from typing import Any

from uom_auth import STUDENT_DATA_PATH, AuthSessionManager, api_get

GRADES_PATH = '/feign/student/grades/all'
GRADE_STATS_PATH = '/feign/student/grades/stats/course_syllabus/{course_syllabus_id}/exam_period/{exam_period_id}'


class PortalClient:
    """
    Issues authenticated GETs using whatever session the manager holds.

    The session is snapshotted before each call, so a concurrent logout or
    re-login never mixes credentials within one request.
    """

    def __init__(self, manager: AuthSessionManager):
        self.manager = manager

    def get(self, path: str) -> Any:
        session = self.manager.snapshot()
        return api_get(session.http, path, session.csrf, session.profile_id)

    def student_info(self) -> Any:
        return self.get(STUDENT_DATA_PATH)

    def grades(self) -> Any:
        return self.get(GRADES_PATH)

    def grade_stats(self, course_syllabus_id: str, exam_period_id: str) -> Any:
        if not course_syllabus_id or not exam_period_id:
            raise ValueError('course_syllabus_id and exam_period_id are required')
        return self.get(GRADE_STATS_PATH.format(
            course_syllabus_id=course_syllabus_id,
            exam_period_id=exam_period_id,
        ))


# ── Response shape helpers ──────────────────────────────────────────


def first_list(payload: Any) -> list:
    """Grades and stats come either as a bare list or wrapped in an object."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for value in payload.values():
            if isinstance(value, list):
                return value
    return []


def _first(record: dict, *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _nested(record: dict, outer: str, inner: str) -> Any:
    value = record.get(outer)
    return value.get(inner) if isinstance(value, dict) else None


def _id_of(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get('id'), str):
        return value['id']
    return None


def student_display_name(info: dict) -> str:
    first = _first(info, 'firstname', 'firstName', 'first_name', 'name') or ''
    last = _first(info, 'lastname', 'lastName', 'last_name', 'surname') or ''
    return f'{first} {last}'.strip() or 'Student'


def student_number(info: dict) -> str:
    return str(_first(info, 'studentNo', 'am', 'studentId', 'id') or '')


def course_name(grade: dict) -> str:
    return (
        grade.get('courseName')
        or _nested(grade, 'course', 'title')
        or _nested(grade, 'course', 'name')
        or _first(grade, 'title', 'name')
        or '-'
    )


def course_code(grade: dict) -> str:
    return grade.get('courseCode') or _nested(grade, 'course', 'code') or grade.get('code') or ''


def grade_value(grade: dict) -> float | None:
    """Numeric grade on the 0-10 scale; the API sometimes reports 0-1 (0.85 == 8.5)."""
    value = _first(grade, 'grade', 'score', 'mark')
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    scaled = value * 10 if value <= 1 else value
    return round(scaled, 1)


def course_syllabus_id(grade: dict) -> str | None:
    """Id for the stats endpoint; may be a plain string or an object with an id."""
    course = grade.get('course') if isinstance(grade.get('course'), dict) else {}
    value = _first(grade, 'courseSyllabusId')
    if value is None:
        value = course.get('courseSyllabusId') or course.get('courseSyllabus') or grade.get('course_syllabus_id')
    return _id_of(value)


def exam_period_id(grade: dict) -> str | None:
    value = _first(grade, 'examPeriodId')
    if value is None:
        value = _first(grade, 'examPeriod', 'periodId', 'exam_period_id')
    return _id_of(value)


def grade_record_id(grade: dict) -> str:
    """Stable identifier for a grade record, used to spot newly published grades."""
    ident = _first(grade, 'id', 'gradeId', 'grade_id')
    if isinstance(ident, str):
        return ident
    syllabus = grade.get('syllabus')
    if syllabus is None:
        syllabus = _nested(grade, 'courseSyllabusId', 'syllabus')
    period = _first(grade, 'examPeriodId', 'periodId', 'exam_period_id')
    period = _id_of(period) if period is not None else ''
    mark = _first(grade, 'grade', 'score', 'mark')
    return '-'.join(str(part) if part is not None else '' for part in (course_code(grade), syllabus, period, mark))
