import datetime
import re
import unicodedata
from zoneinfo import ZoneInfo

import pandas as pd

RECEIVED = "recibio"
NOT_RECEIVED = "no_recibio"
ABSENT = "ausente"
OUTCOME_STATES = (RECEIVED, NOT_RECEIVED, ABSENT)

ACTIVE = "activo"
INACTIVE = "inactivo"

ALL_SITES = "todas"
ALL_GROUPS = "todos"

OUTCOME_LABELS = {
    RECEIVED: "Recibió",
    NOT_RECEIVED: "No recibió",
    ABSENT: "Ausente",
}
NOT_RECORDED_LABEL = "Sin registro"

# Matrix cell glyphs
OUTCOME_GLYPHS = {
    RECEIVED: "✓",
    NOT_RECEIVED: "✗",
    ABSENT: "A",
}
NO_DATA_GLYPH = "-"

INCIDENT_TYPES = [
    "Ninguna",
    "No le gustó el menú",
    "Alergia / restricción alimentaria",
    "Llegó tarde",
    "Enfermo",
    "Otra",
]

# Manual Spanish day name mapping to avoid locale/encoding issues
SPANISH_DAY_NAMES = {
    "Monday": "Lunes",
    "Tuesday": "Martes",
    "Wednesday": "Miércoles",
    "Thursday": "Jueves",
    "Friday": "Viernes",
    "Saturday": "Sábado",
    "Sunday": "Domingo"
}

SPANISH_MONTH_ABBR = ["ene", "feb", "mar", "abr", "may", "jun",
                      "jul", "ago", "sep", "oct", "nov", "dic"]


def local_now(timezone=None):
    """Current wall-clock time at the school, aware when ``timezone`` is set."""
    if not timezone:
        return datetime.datetime.now()
    return datetime.datetime.now(ZoneInfo(timezone))


def local_today(timezone=None, now=None):
    """
    Calendar date at the school, independent of the server clock.

    Args:
        timezone (str, optional): IANA name such as 'America/Bogota'.
        now (datetime, optional): Aware instant to convert, defaults to now.
    """
    if now is None:
        return local_now(timezone).date()
    if not timezone:
        return now.date()
    return now.astimezone(ZoneInfo(timezone)).date()


def legend_text():
    return ", ".join(f"{glyph} = {OUTCOME_LABELS[state]}" for state, glyph in OUTCOME_GLYPHS.items()) \
        + f", {NO_DATA_GLYPH} = {NOT_RECORDED_LABEL}"


def parse_date(value):
    """
    Parse a 'YYYY-MM-DD' string (or pass through a date) into datetime.date.

    Raises:
        ValueError: If the value is not a valid calendar date.
    """
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.datetime.strptime(str(value).strip(), "%Y-%m-%d").date()


def date_format(date_value, from_format="%Y-%m-%d", to_format="%d/%m/%Y"):
    """
    Convert date from one format to another.

    Args:
        date_value (str/datetime): The date to convert
        from_format (str): The format of the input date (e.g., '%Y-%m-%d')
        to_format (str): The desired output format (default: '%d/%m/%Y')

    Returns:
        str: Formatted date string or 'No especificada' if conversion fails

    Examples:
        date_format("2024-01-08") -> "08/01/2024"
        date_format("08-01-2024", "%d-%m-%Y", "%Y/%m/%d") -> "2024/01/08"
    """
    if date_value is None or (not isinstance(date_value, (datetime.date, str)) and pd.isna(date_value)):
        return 'No especificada'

    try:
        if hasattr(date_value, 'strftime'):
            return date_value.strftime(to_format)

        date_str = str(date_value).strip()
        if date_str.lower() in ['', 'no especificada', 'none']:
            return 'No especificada'
        return datetime.datetime.strptime(date_str, from_format).strftime(to_format)
    except (ValueError, TypeError, AttributeError):
        return 'No especificada'


def spanish_day_label(date_value):
    """'Lunes 08 ene' style label used in headers and weekly schedules."""
    day = parse_date(date_value)
    day_name = SPANISH_DAY_NAMES[day.strftime('%A')]
    return f"{day_name} {day.day:02d} {SPANISH_MONTH_ABBR[day.month - 1]}"


def matrix_column_label(date_value):
    """Short 'Lu 08/01' header for one matrix column."""
    day = parse_date(date_value)
    return f"{SPANISH_DAY_NAMES[day.strftime('%A')][:2]} {day.strftime('%d/%m')}"


def create_filename_date_range(start_date, end_date):
    """
    Create a date range string for filename from start and end dates.
    Returns '_YYYYMMDD' for a single day, '_YYYYMMDD_a_YYYYMMDD' otherwise.
    """
    try:
        start_str = parse_date(start_date).strftime('%Y%m%d')
        end_str = parse_date(end_date).strftime('%Y%m%d')
    except (ValueError, AttributeError, TypeError):
        return ""
    if start_str == end_str:
        return f"_{start_str}"
    return f"_{start_str}_a_{end_str}"


def strip_accents(text):
    normalized = unicodedata.normalize("NFD", str(text))
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def normalize_key(text):
    """Lowercase, accent-free form used for fuzzy column matching."""
    return strip_accents(text).lower().strip()


def slugify(text):
    """Filesystem-friendly label: 'María Inmaculada' -> 'Maria_Inmaculada'."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "_", strip_accents(text)).strip("_")
    return cleaned or "reporte"


def safe_str(value):
    """Safely convert value to string, handling NaN and None"""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    text = str(value).strip()
    # Excel hands numeric codes back as floats
    if re.fullmatch(r"\d+\.0", text):
        text = text[:-2]
    return text


def group_sort_key(grupo):
    """Natural order for group labels: '601' < '602' < '1101', letters after digits."""
    parts = re.split(r"(\d+)", str(grupo))
    return [(0, int(p)) if p.isdigit() else (1, p.lower()) for p in parts if p != ""]
