"""
Attendance aggregation.

``aggregate`` fetches the roster and the attendance events of a period from
the store and hands them to ``summarize``, which does all the counting on
pandas DataFrames without touching the store.
"""
import datetime
import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from errors import AggregationFailed, FetchFailed, ReportInProgress
from periods import ReportPeriod
from utils import (ABSENT, ACTIVE, ALL_GROUPS, ALL_SITES, INACTIVE, NOT_RECEIVED,
                   RECEIVED, group_sort_key)

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_GROUP_PATTERN = r"20\d{2}"

STUDENT_COLUMNS = ['id', 'nombre', 'matricula', 'grado', 'grupo', 'sede', 'estado']
EVENT_COLUMNS = ['estudiante_id', 'fecha', 'estado', 'novedad_tipo', 'novedad_descripcion',
                 'created_at', 'registrado_por', 'nombre', 'grupo', 'sede']


@dataclass(frozen=True)
class GroupAggregate:
    grupo: str
    count: int
    total: int
    percentage: int


@dataclass(frozen=True)
class PendingGroup:
    grupo: str
    total: int


@dataclass
class AttendanceSummary:
    period: ReportPeriod
    sede: str
    grupo: str
    received_count: int
    not_received_count: int
    absent_count: int
    inactive_count: int
    total_active_students: int
    total_active_groups: int
    overall_percentage: float
    groups: Dict[str, List[GroupAggregate]]
    pending_groups: List[PendingGroup]
    students: pd.DataFrame = field(repr=False)
    events: pd.DataFrame = field(repr=False)
    # Same data before the group filter, for the consolidated export tables
    site_students: pd.DataFrame = field(repr=False)
    site_events: pd.DataFrame = field(repr=False)

    @property
    def pending_groups_count(self):
        return len(self.pending_groups)

    @property
    def total_events(self):
        return self.received_count + self.not_received_count + self.absent_count

    @property
    def has_group_filter(self):
        return self.grupo not in (None, "", ALL_GROUPS)


def round_half_up(value, digits=0):
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def percentage(count, total, digits=0):
    """count / total * 100, zero when total is zero."""
    if not total:
        return 0 if digits == 0 else 0.0
    return round_half_up(count * 100 / total, digits)


def students_frame(records):
    df = pd.DataFrame(list(records), columns=STUDENT_COLUMNS)
    for column in STUDENT_COLUMNS:
        df[column] = df[column].fillna('').astype(str)
    return df


def events_frame(records):
    df = pd.DataFrame(list(records), columns=EVENT_COLUMNS)
    for column in EVENT_COLUMNS:
        df[column] = df[column].fillna('').astype(str)
    return df


def exclude_provisional_groups(students_df, pattern=DEFAULT_EXCLUDED_GROUP_PATTERN):
    """Drop students whose group label carries a cohort year marker such as '2025'."""
    if not pattern or students_df.empty:
        return students_df
    mask = students_df['grupo'].str.contains(pattern, regex=True, na=False)
    if mask.any():
        logger.info("Excluding %d students in provisional groups", int(mask.sum()))
    return students_df[~mask].reset_index(drop=True)


def _group_breakdown(counts, totals_by_group):
    rows = []
    for grupo, count in counts.items():
        total = int(totals_by_group.get(grupo, 0))
        rows.append(GroupAggregate(grupo=grupo, count=int(count), total=total,
                                   percentage=percentage(int(count), total)))
    return sorted(rows, key=lambda g: (-g.count, group_sort_key(g.grupo)))


def summarize(students_df, events_df, period, sede=ALL_SITES, grupo=ALL_GROUPS):
    """
    Build an AttendanceSummary from an already fetched roster and event list.

    Args:
        students_df (DataFrame): Roster of the site, provisional groups already removed.
        events_df (DataFrame): Attendance events of the period.
        period (ReportPeriod): The resolved period.
        sede (str): Site label or 'todas'.
        grupo (str): Group label or 'todos'.

    Returns:
        AttendanceSummary
    """
    site_students = students_df.sort_values(['grupo', 'nombre'], kind='mergesort').reset_index(drop=True)

    start_key = period.start_date.isoformat()
    end_key = period.end_date.isoformat()
    site_events = events_df[(events_df['fecha'] >= start_key) & (events_df['fecha'] <= end_key)]
    # Roster group and site win over whatever the event carried
    site_events = (
        site_events.drop(columns=['nombre', 'grupo', 'sede'], errors='ignore')
        .merge(site_students[['id', 'nombre', 'grupo', 'sede']],
               left_on='estudiante_id', right_on='id', how='inner')
        .drop(columns='id')
        .sort_values(['fecha', 'created_at', 'estudiante_id'], kind='mergesort')
        .reset_index(drop=True)
    )

    roster, events = site_students, site_events
    if grupo and grupo != ALL_GROUPS:
        roster = roster[roster['grupo'] == grupo].reset_index(drop=True)
        events = events[events['grupo'] == grupo].reset_index(drop=True)

    active = roster[roster['estado'] == ACTIVE]
    inactive = roster[roster['estado'] == INACTIVE]

    totals_by_group = active[active['grupo'] != ''].groupby('grupo').size()

    groups = {}
    for state in (RECEIVED, NOT_RECEIVED, ABSENT):
        state_events = events[(events['estado'] == state) & (events['grupo'] != '')]
        groups[state] = _group_breakdown(state_events.groupby('grupo').size(), totals_by_group)
    groups[INACTIVE] = _group_breakdown(
        inactive[inactive['grupo'] != ''].groupby('grupo').size(), totals_by_group)

    active_groups = set(totals_by_group.index)
    reported_groups = set(events['grupo']) - {''}
    pending = sorted(active_groups - reported_groups, key=group_sort_key)
    pending_groups = [PendingGroup(grupo=g, total=int(totals_by_group[g])) for g in pending]

    received_count = int((events['estado'] == RECEIVED).sum())
    total_active = len(active)

    return AttendanceSummary(
        period=period,
        sede=sede or ALL_SITES,
        grupo=grupo or ALL_GROUPS,
        received_count=received_count,
        not_received_count=int((events['estado'] == NOT_RECEIVED).sum()),
        absent_count=int((events['estado'] == ABSENT).sum()),
        inactive_count=len(inactive),
        total_active_students=total_active,
        total_active_groups=len(active_groups),
        overall_percentage=percentage(received_count, total_active * period.business_days, digits=1),
        groups=groups,
        pending_groups=pending_groups,
        students=roster,
        events=events,
        site_students=site_students,
        site_events=site_events,
    )


def aggregate(store, period, sede=ALL_SITES, grupo=ALL_GROUPS,
              excluded_group_pattern=DEFAULT_EXCLUDED_GROUP_PATTERN):
    """
    Fetch roster and events for ``period`` and summarize them.

    Raises:
        AggregationFailed: If any read against the store fails. Nothing partial is returned.
    """
    site = None if sede in (None, "", ALL_SITES) else sede
    logger.info("Aggregating %s %s..%s sede=%s grupo=%s",
                period.tag, period.start_date, period.end_date, sede, grupo)
    try:
        students = store.list_students(sede=site)
        # Group filter is applied in summarize so the site-wide tables stay available
        events = store.list_attendance(period.start_date, period.end_date, sede=site, roster=students)
    except FetchFailed as e:
        logger.error("Aggregation aborted: %s", e)
        raise AggregationFailed() from e

    students_df = exclude_provisional_groups(students_frame(students), excluded_group_pattern)
    return summarize(students_df, events_frame(events), period, sede=sede, grupo=grupo)


_in_flight = set()
_in_flight_lock = threading.Lock()


@contextmanager
def report_guard(key):
    """Refuse a second concurrent run of the same report."""
    with _in_flight_lock:
        if key in _in_flight:
            logger.warning("Report %s already running", key)
            raise ReportInProgress()
        _in_flight.add(key)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight.discard(key)


def student_history(store, student_id, days=30, today=None):
    """Events of one student over the last ``days`` days, newest first."""
    today = today or datetime.date.today()
    start_date = today - datetime.timedelta(days=days)
    events = events_frame(store.list_attendance(start_date, today, student_id=student_id))
    return events.sort_values('fecha', ascending=False, kind='mergesort').reset_index(drop=True)


def recent_receipt_rate(events_df):
    """Share of recorded events that were 'recibio', one decimal."""
    if events_df is None or events_df.empty:
        return 0.0
    received = int((events_df['estado'] == RECEIVED).sum())
    return percentage(received, len(events_df), digits=1)


@dataclass(frozen=True)
class UserActivity:
    total_records: int
    active_days: int
    groups_served: int
    last_record: Optional[str]


def user_activity(events_df, email):
    """
    Profile totals for the events recorded by ``email``.

    Returns:
        UserActivity: Records, distinct days, distinct groups and the latest
        fecha (None when the user has recorded nothing).
    """
    mine = events_df[events_df['registrado_por'] == email] if email else events_df.iloc[0:0]
    if mine.empty:
        return UserActivity(total_records=0, active_days=0, groups_served=0, last_record=None)
    return UserActivity(
        total_records=len(mine),
        active_days=int(mine['fecha'].nunique()),
        groups_served=int(mine.loc[mine['grupo'] != '', 'grupo'].nunique()),
        last_record=mine['fecha'].max(),
    )


def load_user_activity(store, email):
    """Fetch every event recorded by ``email`` and summarize it."""
    events = store.list_attendance(registrado_por=email)
    return user_activity(events_frame(events), email)
