import datetime
import logging
from collections import Counter
from dataclasses import dataclass

from errors import ValidationFailed
from periods import week_bounds
from utils import ACTIVE, group_sort_key, parse_date, spanish_day_label

logger = logging.getLogger(__name__)

SERVICE_START = "07:10"
SERVICE_END = "12:05"
BREAK_SLOTS = ["08:50 AM", "09:00 AM", "11:00 AM"]
NO_SHOW_MARKER = "NO_ASISTE"


@dataclass(frozen=True)
class GlobalGroup:
    id: str
    label: str
    is_combo: bool


def _to_minutes(hhmm):
    hours, minutes = hhmm.split(':')
    return int(hours) * 60 + int(minutes)


def _to_label(total_minutes):
    hours, minutes = divmod(total_minutes, 60)
    ampm = 'PM' if hours >= 12 else 'AM'
    if hours > 12:
        hours -= 12
    return f"{hours:02d}:{minutes:02d} {ampm}"


def generate_time_slots(interval_minutes=10):
    """
    Meal-shift slots from 07:10 up to, not including, 12:05.

    Returns:
        list: Labels like '07:10 AM', ..., '12:00 PM'.
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")
    end = _to_minutes(SERVICE_END)
    return [_to_label(m) for m in range(_to_minutes(SERVICE_START), end, interval_minutes)]


def is_break_time(slot):
    return slot in BREAK_SLOTS


def process_groups(raw_groups):
    """
    Unique, naturally sorted groups.

    Combined shifts are never generated from single groups. A label is marked
    ``is_combo`` only when it already contains '+' (e.g. '604+605'), as
    stored on roster records or typed in a schedule.
    """
    unique = {str(g).strip() for g in raw_groups if g and str(g).strip()}
    return [GlobalGroup(id=g, label=g, is_combo='+' in g) for g in sorted(unique, key=group_sort_key)]


def active_counts_by_group(students):
    """{grupo: number of active students}"""
    return dict(Counter(s.get('grupo') for s in students if s.get('estado') == ACTIVE and s.get('grupo')))


def _clean_item(item):
    return {
        'time': str(item.get('time') or '').strip(),
        'group': str(item.get('group') or '').strip(),
        'notes': str(item.get('notes') or '').strip(),
    }


def load_schedule(store, fecha):
    return [_clean_item(item) for item in store.get_schedule(parse_date(fecha).isoformat())]


def save_schedule(store, fecha, items):
    """
    Replace the whole schedule of one day.

    Blank rows are dropped; a row with only one of time/group is rejected.

    Raises:
        ValidationFailed: Incomplete row.
    """
    cleaned = []
    for item in map(_clean_item, items):
        if not item['time'] and not item['group'] and not item['notes']:
            continue
        if not item['time'] or not item['group']:
            raise ValidationFailed("Cada fila del horario necesita hora y grupo.")
        cleaned.append(item)
    day = parse_date(fecha).isoformat()
    store.set_schedule(day, cleaned)
    logger.info("Schedule for %s saved with %d items", day, len(cleaned))
    return cleaned


def load_week(store, week_start):
    """Monday-Friday schedules of the week containing ``week_start``; missing days are empty."""
    monday, _ = week_bounds(parse_date(week_start))
    days = []
    for offset in range(5):
        day = monday + datetime.timedelta(days=offset)
        days.append({
            'date': day.isoformat(),
            'label': spanish_day_label(day),
            'items': load_schedule(store, day),
        })
    return days
