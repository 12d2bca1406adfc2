import datetime
import logging
import os
import re

import firebase_admin
from firebase_admin import credentials, db, exceptions

from errors import FetchFailed, WriteFailed

logger = logging.getLogger(__name__)

STUDENTS_PATH = "students"
ATTENDANCE_PATH = "attendance"
SCHEDULES_PATH = "schedules"

_FIREBASE_KEY_CHARS = re.compile(r"[.#$\[\]/]")


def student_key(matricula):
    """Firebase keys cannot contain '.', '#', '$', '[', ']' or '/'."""
    return _FIREBASE_KEY_CHARS.sub(",", str(matricula).strip())


def initialize_firebase(service_account, database_url):
    """
    Initialize the firebase_admin app once per process.

    Returns:
        bool: True if the app is ready, False if the key file is missing or invalid.
    """
    if firebase_admin._apps:
        return True
    if not os.path.exists(service_account):
        logger.error("Firebase key file not found: %s", service_account)
        return False
    try:
        cred = credentials.Certificate(service_account)
        firebase_admin.initialize_app(cred, {'databaseURL': database_url})
        logger.info("Firebase initialized successfully")
        return True
    except ValueError as ve:
        logger.error("Invalid Firebase credentials: %s", ve)
        return False


def get_reference(path=''):
    """Get a reference to the specified path in the Realtime Database"""
    return db.reference(path)


class FirebaseStore:
    """
    Roster Store and Attendance Log on the Firebase Realtime Database.

    Layout:
        students/{matricula_key}            -> student record
        attendance/{YYYY-MM-DD}/{student}   -> attendance event
        schedules/{YYYY-MM-DD}              -> {'items': [...], 'updated_at': ...}

    Reads raise FetchFailed and writes raise WriteFailed; nothing is retried.
    """

    def __init__(self, service_account, database_url):
        self.ready = initialize_firebase(service_account, database_url)

    def _get(self, path, query=None):
        if not self.ready:
            raise FetchFailed("La conexión con la base de datos no está configurada.")
        try:
            ref = get_reference(path)
            return (query(ref) if query else ref).get()
        except (exceptions.FirebaseError, ValueError) as e:
            logger.error("Firebase read failed at %s: %s", path, e)
            raise FetchFailed() from e

    def _update(self, path, data):
        if not self.ready:
            raise WriteFailed("La conexión con la base de datos no está configurada.")
        try:
            get_reference(path).update(data)
        except (exceptions.FirebaseError, ValueError) as e:
            logger.error("Firebase write failed at %s: %s", path, e)
            raise WriteFailed() from e

    def _set(self, path, data):
        if not self.ready:
            raise WriteFailed("La conexión con la base de datos no está configurada.")
        try:
            get_reference(path).set(data)
        except (exceptions.FirebaseError, ValueError) as e:
            logger.error("Firebase write failed at %s: %s", path, e)
            raise WriteFailed() from e

    # --- Roster ---

    def list_students(self, sede=None, grupo=None):
        data = self._get(STUDENTS_PATH) or {}
        students = []
        for key, record in data.items():
            if not isinstance(record, dict):
                continue
            if sede and record.get('sede') != sede:
                continue
            if grupo and record.get('grupo') != grupo:
                continue
            students.append({**record, 'id': key})
        logger.info("Loaded %d students (sede=%s, grupo=%s)", len(students), sede, grupo)
        return students

    def upsert_students(self, records):
        """Insert or update students keyed on their enrollment code."""
        updates = {}
        for record in records:
            key = student_key(record['matricula'])
            for field, value in record.items():
                if field != 'id':
                    updates[f"{key}/{field}"] = value
        self._update(STUDENTS_PATH, updates)
        return len(records)

    def update_student_fields(self, ids, patch):
        updates = {f"{student_id}/{field}": value for student_id in ids for field, value in patch.items()}
        if updates:
            self._update(STUDENTS_PATH, updates)
        return len(ids)

    def update_students_where(self, field, value, patch):
        """Apply ``patch`` to every student whose ``field`` equals ``value``."""
        ids = [s['id'] for s in self.list_students() if s.get(field) == value]
        logger.info("Updating %d students where %s=%s", len(ids), field, value)
        return self.update_student_fields(ids, patch)

    # --- Attendance ---

    def list_attendance(self, start_date=None, end_date=None, sede=None, grupo=None, student_id=None,
                        registrado_por=None, roster=None):
        """
        Attendance events with fecha in [start_date, end_date], joined to the
        student's nombre, sede and grupo. Events of unknown students are dropped.

        Args:
            start_date, end_date: Inclusive bounds; None leaves that side open.
            registrado_por (str, optional): Only events recorded by this user.
            roster (list, optional): Students already fetched for the same
                sede/grupo, so the roster is not read a second time.
        """
        start_key = str(start_date) if start_date else None
        end_key = str(end_date) if end_date else None

        def date_range(ref):
            query = ref.order_by_key()
            if start_key:
                query = query.start_at(start_key)
            if end_key:
                query = query.end_at(end_key)
            return query

        by_date = self._get(ATTENDANCE_PATH, date_range if start_key or end_key else None) or {}
        if roster is None:
            roster = self.list_students(sede=sede, grupo=grupo)
        roster = {s['id']: s for s in roster}

        events = []
        for fecha, day_records in by_date.items():
            if not isinstance(day_records, dict):
                continue
            for est_id, record in day_records.items():
                if student_id and est_id != student_id:
                    continue
                student = roster.get(est_id)
                if student is None or not isinstance(record, dict):
                    continue
                if registrado_por and record.get('registrado_por') != registrado_por:
                    continue
                events.append({
                    'estudiante_id': est_id,
                    'fecha': fecha,
                    'estado': record.get('estado'),
                    'novedad_tipo': record.get('novedad_tipo'),
                    'novedad_descripcion': record.get('novedad_descripcion'),
                    'created_at': record.get('created_at'),
                    'registrado_por': record.get('registrado_por'),
                    'nombre': student.get('nombre'),
                    'grupo': student.get('grupo'),
                    'sede': student.get('sede'),
                })
        logger.info("Loaded %d attendance events %s..%s", len(events), start_key, end_key)
        return events

    def upsert_attendance(self, record):
        """One event per (student, date): a later write replaces the earlier one."""
        fecha = str(record['fecha'])
        payload = {
            'estado': record['estado'],
            'novedad_tipo': record.get('novedad_tipo'),
            'novedad_descripcion': record.get('novedad_descripcion'),
            'created_at': record.get('created_at') or datetime.datetime.now().isoformat(timespec='seconds'),
            'registrado_por': record.get('registrado_por'),
        }
        self._set(f"{ATTENDANCE_PATH}/{fecha}/{record['estudiante_id']}", payload)

    # --- Schedules ---

    def get_schedule(self, fecha):
        data = self._get(f"{SCHEDULES_PATH}/{fecha}") or {}
        return list(data.get('items') or [])

    def set_schedule(self, fecha, items):
        self._set(f"{SCHEDULES_PATH}/{fecha}", {
            'items': list(items),
            'updated_at': datetime.datetime.now().isoformat(timespec='seconds'),
        })

    def list_schedules(self):
        data = self._get(SCHEDULES_PATH) or {}
        return [{'date': fecha, **value} for fecha, value in data.items() if isinstance(value, dict)]
