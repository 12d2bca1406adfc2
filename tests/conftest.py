# tests/conftest.py
"""
In-memory stand-in for FirebaseStore plus a small school used by most tests.

The school:
- Principal: group 601 (ANA, BETO, CARLA active, DIANA inactive),
  group 602 (ELENA, FABIO), provisional group 2025A (GINA)
- Primaria: group 301 (HUGO, IRMA)

Events: Monday 2024-01-08, Tuesday 2024-01-09 and Saturday 2024-01-13.
"""
import datetime

import pytest

from errors import FetchFailed, WriteFailed
from firebase_config import student_key


class FakeStore:
    """Same interface as FirebaseStore, backed by dicts."""

    def __init__(self, students=None, events=None, schedules=None):
        self.students = {s['id']: dict(s) for s in students or []}
        self.attendance = {}
        for event in events or []:
            self.upsert_attendance(event)
        self.schedules = dict(schedules or {})
        self.fail_reads = False
        self.failing_upsert_calls = set()
        self.upsert_calls = 0
        self.list_students_calls = 0

    def _check_read(self):
        if self.fail_reads:
            raise FetchFailed()

    def list_students(self, sede=None, grupo=None):
        self._check_read()
        self.list_students_calls += 1
        return [
            dict(s) for s in self.students.values()
            if (not sede or s.get('sede') == sede) and (not grupo or s.get('grupo') == grupo)
        ]

    def list_attendance(self, start_date=None, end_date=None, sede=None, grupo=None, student_id=None,
                        registrado_por=None, roster=None):
        self._check_read()
        if roster is None:
            roster = self.list_students(sede=sede, grupo=grupo)
        roster = {s['id']: s for s in roster}
        start_key = str(start_date) if start_date else ""
        end_key = str(end_date) if end_date else "9999-12-31"
        events = []
        for (fecha, est_id), record in sorted(self.attendance.items()):
            student = roster.get(est_id)
            if student is None or not (start_key <= fecha <= end_key):
                continue
            if student_id and est_id != student_id:
                continue
            if registrado_por and record.get('registrado_por') != registrado_por:
                continue
            events.append({
                **record,
                'nombre': student['nombre'],
                'grupo': student['grupo'],
                'sede': student['sede'],
            })
        return events

    def upsert_students(self, records):
        self.upsert_calls += 1
        if self.upsert_calls in self.failing_upsert_calls:
            raise WriteFailed()
        for record in records:
            key = student_key(record['matricula'])
            self.students[key] = {**self.students.get(key, {}), **record, 'id': key}
        return len(records)

    def upsert_attendance(self, record):
        fecha = str(record['fecha'])
        self.attendance[(fecha, record['estudiante_id'])] = {
            'estudiante_id': record['estudiante_id'],
            'fecha': fecha,
            'estado': record['estado'],
            'novedad_tipo': record.get('novedad_tipo'),
            'novedad_descripcion': record.get('novedad_descripcion'),
            'created_at': record.get('created_at') or f"{fecha}T11:30:00",
            'registrado_por': record.get('registrado_por'),
        }

    def update_student_fields(self, ids, patch):
        for student_id in ids:
            self.students[student_id].update(patch)
        return len(ids)

    def update_students_where(self, field, value, patch):
        ids = [sid for sid, s in self.students.items() if s.get(field) == value]
        return self.update_student_fields(ids, patch)

    def get_schedule(self, fecha):
        self._check_read()
        return list(self.schedules.get(str(fecha), {}).get('items', []))

    def set_schedule(self, fecha, items):
        self.schedules[str(fecha)] = {'items': list(items), 'updated_at': '2024-01-08T07:00:00'}

    def list_schedules(self):
        self._check_read()
        return [{'date': fecha, **value} for fecha, value in self.schedules.items()]


def make_student(student_id, nombre, grupo, sede="Principal", estado="activo"):
    return {
        'id': student_id,
        'nombre': nombre,
        'matricula': student_id,
        'grado': grupo[:-2] if grupo[:-2].isdigit() else '',
        'grupo': grupo,
        'sede': sede,
        'estado': estado,
    }


def make_event(student_id, fecha, estado, hora="11:30", **extra):
    return {
        'estudiante_id': student_id,
        'fecha': fecha,
        'estado': estado,
        'created_at': f"{fecha}T{hora}:00",
        **extra,
    }


SCHOOL_STUDENTS = [
    make_student("p1", "ANA", "601"),
    make_student("p2", "BETO", "601"),
    make_student("p3", "CARLA", "601"),
    make_student("p4", "DIANA", "601", estado="inactivo"),
    make_student("p5", "ELENA", "602"),
    make_student("p6", "FABIO", "602"),
    make_student("p7", "GINA", "2025A"),
    make_student("s1", "HUGO", "301", sede="Primaria"),
    make_student("s2", "IRMA", "301", sede="Primaria"),
]

SCHOOL_EVENTS = [
    make_event("p1", "2024-01-08", "recibio", "11:00"),
    make_event("p2", "2024-01-08", "recibio", "11:05"),
    make_event("p3", "2024-01-08", "no_recibio", "11:10", novedad_tipo="No le gustó el menú",
               novedad_descripcion="Pidió otra fruta"),
    make_event("s1", "2024-01-08", "ausente", "09:00"),
    make_event("p7", "2024-01-08", "recibio", "11:20"),
    make_event("p1", "2024-01-09", "recibio", "11:00"),
    make_event("p5", "2024-01-09", "recibio", "11:30"),
    make_event("p1", "2024-01-13", "recibio", "10:00"),
]

MONDAY = datetime.date(2024, 1, 8)


@pytest.fixture
def store():
    return FakeStore(SCHOOL_STUDENTS, SCHOOL_EVENTS)


@pytest.fixture
def empty_store():
    return FakeStore()
