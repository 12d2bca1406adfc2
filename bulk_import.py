"""
Roster import and bulk administrative operations.

Imports are upserts keyed on the enrollment code, written in fixed-size
chunks. A failed chunk is counted and skipped; chunks already written stay
written.
"""
import datetime
import logging
import zipfile
from dataclasses import dataclass, field
from typing import List

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from errors import ValidationFailed, WriteFailed
from exporters import render_backup_workbook
from utils import ACTIVE, INACTIVE, normalize_key, safe_str

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
HEADER_SCAN_ROWS = 25
DEFAULT_SITE = "Principal"
MIN_CODE_LENGTH = 3

# Fuzzy column names, matched on lowercase accent-free headers
CODE_KEYS = ['matricula', 'codigo']
NAME_KEYS = ['nombre', 'estudiante', 'alumno']
SURNAME_KEYS = ['apellido']
GRADE_KEYS = ['grado']
GROUP_KEYS = ['grupo']
SITE_KEYS = ['sede']

STATUS_TRANSITIONS = {
    ACTIVE: INACTIVE,
    INACTIVE: ACTIVE,
}

PARTIAL_FAILURE_MESSAGE = "Se procesaron datos con algunos errores."


@dataclass
class BulkResult:
    success_count: int = 0
    error_count: int = 0
    failed_batches: List[int] = field(default_factory=list)

    @property
    def has_errors(self):
        return self.error_count > 0

    @property
    def message(self):
        if self.has_errors:
            return PARTIAL_FAILURE_MESSAGE
        return f"Se procesaron {self.success_count} estudiantes correctamente."


def _is_header_row(values):
    text = " ".join(normalize_key(safe_str(v)) for v in values)
    return 'matricula' in text and ('nombre' in text or 'estudiante' in text)


def find_header_row(raw_df, scan_rows=HEADER_SCAN_ROWS):
    """Index of the first row that looks like the roster header, or None."""
    for index in range(min(len(raw_df), scan_rows)):
        if _is_header_row(raw_df.iloc[index].tolist()):
            return index
    return None


def _find_column(columns, keys, exclude=None):
    for column in columns:
        if column == exclude:
            continue
        if any(key in normalize_key(column) for key in keys):
            return column
    return None


def normalize_site(value, known_sites=None):
    """'PRIMARIA' -> 'Primaria'. Known site names keep their configured spelling."""
    site = safe_str(value) or DEFAULT_SITE
    for known in known_sites or []:
        if normalize_key(known) == normalize_key(site):
            return known
    return site[:1].upper() + site[1:].lower()


def _sheet_records(sheet_name, raw_df, known_sites=None):
    header_index = find_header_row(raw_df)
    if header_index is None:
        logger.warning("Sheet %s: no header found in the first %d rows, skipping", sheet_name, HEADER_SCAN_ROWS)
        return []

    columns = [safe_str(c) for c in raw_df.iloc[header_index].tolist()]
    data = raw_df.iloc[header_index + 1:]

    code_col = _find_column(columns, CODE_KEYS)
    name_col = _find_column(columns, NAME_KEYS)
    surname_col = _find_column(columns, SURNAME_KEYS, exclude=name_col)
    grade_col = _find_column(columns, GRADE_KEYS)
    group_col = _find_column(columns, GROUP_KEYS)
    site_col = _find_column(columns, SITE_KEYS)

    def cell(values, column):
        return safe_str(values[columns.index(column)]) if column else ""

    records = []
    for values in data.itertuples(index=False, name=None):
        matricula = cell(values, code_col)
        nombre = cell(values, name_col)
        apellidos = cell(values, surname_col)
        if apellidos and nombre:
            nombre = f"{apellidos} {nombre}"
        if not matricula or not nombre or len(matricula) < MIN_CODE_LENGTH:
            continue
        records.append({
            'matricula': matricula,
            'nombre': nombre.upper(),
            'grado': cell(values, grade_col),
            'grupo': cell(values, group_col) or str(sheet_name).strip(),
            'sede': normalize_site(cell(values, site_col), known_sites),
            'estado': ACTIVE,
        })
    logger.info("Sheet %s: %d valid rows (header on row %d)", sheet_name, len(records), header_index + 1)
    return records


def parse_roster_workbook(file, known_sites=None):
    """
    Read every sheet of a roster workbook into student records.

    Args:
        file: Path or file-like object (e.g. a Streamlit UploadedFile), .xlsx only.
        known_sites (list, optional): Site names whose spelling should be kept.

    Returns:
        list: One dict per student, later codes overriding earlier duplicates.

    Raises:
        ValidationFailed: The file cannot be read or contains no valid rows.
    """
    try:
        sheets = pd.read_excel(file, sheet_name=None, header=None, dtype=str, engine="openpyxl")
    except (ValueError, OSError, zipfile.BadZipFile, InvalidFileException) as e:
        logger.error("Roster workbook could not be read: %s", e)
        raise ValidationFailed("No se pudo leer el archivo. Verifique que sea un Excel .xlsx válido.") from e

    by_code = {}
    for sheet_name, raw_df in sheets.items():
        for record in _sheet_records(sheet_name, raw_df, known_sites):
            by_code[record['matricula']] = record

    if not by_code:
        raise ValidationFailed("No se encontraron estudiantes válidos en el archivo.")
    return list(by_code.values())


def upsert_in_batches(store, records, batch_size=DEFAULT_BATCH_SIZE, progress=None):
    """
    Upsert ``records`` in chunks of ``batch_size``.

    A chunk that fails is counted in ``error_count`` and the remaining chunks
    are still sent. Nothing is rolled back.

    Args:
        progress (callable, optional): Called as progress(done, total) after each chunk.

    Returns:
        BulkResult
    """
    result = BulkResult()
    total = len(records)
    total_batches = (total + batch_size - 1) // batch_size

    for batch_number, start in enumerate(range(0, total, batch_size), start=1):
        batch = records[start:start + batch_size]
        try:
            store.upsert_students(batch)
        except WriteFailed as e:
            result.error_count += len(batch)
            result.failed_batches.append(batch_number)
            logger.error("Batch %d/%d failed: %s", batch_number, total_batches, e)
        else:
            result.success_count += len(batch)
            logger.info("Batch %d/%d written (%d rows)", batch_number, total_batches, len(batch))
        if progress:
            progress(start + len(batch), total)

    return result


def inactivate_all(store):
    """Mark every student that is not already inactive as 'inactivo'."""
    ids = [s['id'] for s in store.list_students() if s.get('estado') != INACTIVE]
    logger.info("Inactivating %d students", len(ids))
    return store.update_student_fields(ids, {'estado': INACTIVE})


def import_roster(store, file, inactivate_first=False, batch_size=DEFAULT_BATCH_SIZE,
                  known_sites=None, progress=None):
    """
    Parse a roster workbook and upsert it.

    The file is validated before anything is written. With
    ``inactivate_first`` every current student is marked inactive, so only
    the students present in the file end up active.
    """
    records = parse_roster_workbook(file, known_sites=known_sites)
    if inactivate_first:
        inactivate_all(store)
    result = upsert_in_batches(store, records, batch_size=batch_size, progress=progress)
    logger.info("Roster import finished: %d ok, %d errors", result.success_count, result.error_count)
    return result


def _require(value, message):
    if not value or not str(value).strip():
        raise ValidationFailed(message)
    return str(value).strip()


def move_students(store, ids, grupo):
    grupo = _require(grupo, "Seleccione el grupo destino.")
    if not ids:
        raise ValidationFailed("Seleccione al menos un estudiante.")
    logger.info("Moving %d students to group %s", len(ids), grupo)
    return store.update_student_fields(ids, {'grupo': grupo})


def rename_group(store, old_name, new_name):
    old_name = _require(old_name, "Seleccione el grupo a renombrar.")
    new_name = _require(new_name, "Escriba el nuevo nombre del grupo.")
    logger.info("Renaming group %s -> %s", old_name, new_name)
    return store.update_students_where('grupo', old_name, {'grupo': new_name})


def change_group_site(store, grupo, sede):
    grupo = _require(grupo, "Seleccione el grupo.")
    sede = _require(sede, "Seleccione la sede destino.")
    logger.info("Moving group %s to site %s", grupo, sede)
    return store.update_students_where('grupo', grupo, {'sede': sede})


def next_status(current):
    """activo -> inactivo -> activo"""
    if current not in STATUS_TRANSITIONS:
        raise ValidationFailed(f"Estado desconocido: {current}")
    return STATUS_TRANSITIONS[current]


def set_student_status(store, ids, estado):
    """Students are never deleted, only switched between 'activo' and 'inactivo'."""
    if estado not in STATUS_TRANSITIONS:
        raise ValidationFailed(f"Estado desconocido: {estado}")
    if not ids:
        raise ValidationFailed("Seleccione al menos un estudiante.")
    logger.info("Setting estado=%s for %d students", estado, len(ids))
    return store.update_student_fields(ids, {'estado': estado})


def backup_filename(today=None):
    today = today or datetime.date.today()
    return f"Respaldo_PAE_{today.isoformat()}.xlsx"


def build_backup(store):
    """Full roster and every saved schedule as an .xlsx file."""
    return render_backup_workbook(store.list_students(), store.list_schedules())
