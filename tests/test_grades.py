"""Tests for grade record helpers and the offline grades cache."""

import json
from types import SimpleNamespace

import pytest

from grades_sync import GradesCache, new_grades, sync_grades
from uom_api import (
    course_code,
    course_name,
    course_syllabus_id,
    exam_period_id,
    first_list,
    grade_record_id,
    grade_value,
    student_display_name,
    student_number,
)

GRADE = {
    'course': {'code': 'ICE101', 'title': 'Mathematics I'},
    'grade': 0.85,
    'courseSyllabusId': {'id': 'CS-1', 'syllabus': 2022},
    'examPeriodId': 'EP-2',
    'status': 'PASSED',
}


class TestShapes:

    @pytest.mark.parametrize('payload, expected', [
        ([1, 2], [1, 2]),
        ({'total': 2, 'grades': [1, 2]}, [1, 2]),
        ({'total': 2}, []),
        ('oops', []),
    ])
    def test_first_list(self, payload, expected):
        assert first_list(payload) == expected

    def test_grade_fields(self):
        assert course_code(GRADE) == 'ICE101'
        assert course_name(GRADE) == 'Mathematics I'
        assert course_syllabus_id(GRADE) == 'CS-1'
        assert exam_period_id(GRADE) == 'EP-2'

    @pytest.mark.parametrize('raw, expected', [(0.85, 8.5), (7, 7), (9.25, 9.2), (None, None), ('8', None)])
    def test_grade_value(self, raw, expected):
        assert grade_value({'grade': raw}) == expected

    def test_record_id_prefers_explicit_id(self):
        assert grade_record_id({'id': 'G-1', 'courseCode': 'X'}) == 'G-1'

    def test_record_id_composite(self):
        assert grade_record_id(GRADE) == 'ICE101-2022-EP-2-0.85'

    def test_student_display(self):
        assert student_display_name({'firstName': 'Alex', 'lastName': 'Johnson'}) == 'Alex Johnson'
        assert student_display_name({}) == 'Student'
        assert student_number({'am': 'ics24130'}) == 'ics24130'


class TestGradesCache:

    def test_save_and_load(self, tmp_path):
        cache = GradesCache(tmp_path / 'grades.json')
        cache.save([GRADE], {'firstname': 'Alex'})
        loaded = cache.load()
        assert loaded['version'] == 2
        assert loaded['grades'] == [GRADE]
        assert loaded['student_info'] == {'firstname': 'Alex'}

    def test_accepts_version_one(self, tmp_path):
        path = tmp_path / 'grades.json'
        path.write_text(json.dumps({'version': 1, 'grades': [], 'cachedAt': 'x'}))
        assert GradesCache(path).load()['grades'] == []

    @pytest.mark.parametrize('content', [
        '{"version": 3, "grades": []}',
        '{"version": 2, "grades": {}}',
        'not json',
        b'\xff\xfe{garbage',
    ])
    def test_rejects_unknown(self, tmp_path, content):
        path = tmp_path / 'grades.json'
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
        assert GradesCache(path).load() is None

    def test_new_grades(self, tmp_path):
        cache = GradesCache(tmp_path / 'grades.json')
        old = {'id': 'G-1'}
        cache.save([old])
        fresh = {'id': 'G-2'}
        assert new_grades([old, fresh], cache.known_ids()) == [fresh]

    def test_sync_survives_unwritable_cache(self, tmp_path, capsys):
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        cache = GradesCache(blocker / 'grades.json')
        client = SimpleNamespace(grades=lambda: {'grades': [GRADE]})

        assert sync_grades(client, cache, {'firstname': 'Alex'}) == 0
        out = capsys.readouterr().out
        assert 'Warning: Failed to save offline grades' in out
        assert 'Grades: 1' in out
