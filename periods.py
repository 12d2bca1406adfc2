"""
Reporting periods.

Turns a period tag picked in the UI into an inclusive date range plus the
number of business days (Monday to Friday) it covers. Everything works on
``datetime.date`` values, so there are no timezone shifts around midnight.
"""
import calendar
import datetime
from dataclasses import dataclass

from errors import ValidationFailed
from utils import parse_date

PERIOD_TODAY = "hoy"
PERIOD_WEEK = "semana"
PERIOD_MONTH = "mes"
PERIOD_DATE = "fecha"

PERIOD_LABELS = {
    PERIOD_TODAY: "Hoy",
    PERIOD_WEEK: "Semana",
    PERIOD_MONTH: "Mes",
    PERIOD_DATE: "Fecha específica",
}


@dataclass(frozen=True)
class ReportPeriod:
    tag: str
    start_date: datetime.date
    end_date: datetime.date
    business_days: int

    @property
    def is_single_day(self):
        return self.start_date == self.end_date

    @property
    def label(self):
        return PERIOD_LABELS.get(self.tag, self.tag)


def business_dates(start_date, end_date):
    """All Monday-Friday dates in [start_date, end_date], in order."""
    dates = []
    current = start_date
    while current <= end_date:
        if current.weekday() < 5:
            dates.append(current)
        current += datetime.timedelta(days=1)
    return dates


def count_business_days(start_date, end_date):
    # Never zero, it is used as a denominator
    return max(1, len(business_dates(start_date, end_date)))


def week_bounds(day):
    """Monday and Sunday of the week containing ``day`` (Sunday is day 7)."""
    iso_weekday = day.isoweekday()
    monday = day - datetime.timedelta(days=iso_weekday - 1)
    return monday, monday + datetime.timedelta(days=6)


def month_bounds(day):
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


def resolve_period(tag, specific_date=None, today=None):
    """
    Resolve a period tag into a ReportPeriod.

    Args:
        tag (str): One of 'hoy', 'semana', 'mes', 'fecha'.
        specific_date (str/date, optional): Required for 'fecha'.
        today (date, optional): Reference day, defaults to the local date.

    Returns:
        ReportPeriod

    Raises:
        ValidationFailed: Unknown tag, or missing/invalid date for 'fecha'.
    """
    today = today or datetime.date.today()

    if tag == PERIOD_TODAY:
        start_date = end_date = today
    elif tag == PERIOD_DATE:
        if not specific_date:
            raise ValidationFailed("Seleccione una fecha para el reporte.")
        try:
            start_date = end_date = parse_date(specific_date)
        except ValueError as e:
            raise ValidationFailed(f"Fecha inválida: {specific_date}") from e
    elif tag == PERIOD_WEEK:
        start_date, end_date = week_bounds(today)
    elif tag == PERIOD_MONTH:
        start_date, end_date = month_bounds(today)
    else:
        raise ValidationFailed(f"Periodo desconocido: {tag}")

    return ReportPeriod(
        tag=tag,
        start_date=start_date,
        end_date=end_date,
        business_days=count_business_days(start_date, end_date),
    )
