import datetime

import pytest

from aggregation import (UserActivity, aggregate, events_frame, exclude_provisional_groups,
                         load_user_activity, percentage, recent_receipt_rate, report_guard,
                         student_history, students_frame, summarize, user_activity)
from conftest import FakeStore, make_event, make_student
from errors import AggregationFailed, ReportInProgress
from periods import resolve_period
from utils import ABSENT, INACTIVE, NOT_RECEIVED, RECEIVED


def monday():
    return resolve_period("fecha", "2024-01-08")


def week():
    return resolve_period("semana", today=datetime.date(2024, 1, 10))


def by_group(rows):
    return {row.grupo: row for row in rows}


class TestSingleGroupMonday:
    """Three active students in 601, two received and one did not."""

    def test_received_breakdown(self, store):
        summary = aggregate(store, monday(), sede="Principal", grupo="601")
        received = by_group(summary.groups[RECEIVED])["601"]
        assert received.count == 2
        assert received.total == 3
        assert received.percentage == 67

    def test_not_received_breakdown(self, store):
        summary = aggregate(store, monday(), sede="Principal", grupo="601")
        assert summary.not_received_count == 1
        assert by_group(summary.groups[NOT_RECEIVED])["601"].count == 1

    def test_inactive_count_does_not_depend_on_range(self, store):
        on_monday = aggregate(store, monday(), sede="Principal", grupo="601")
        whole_week = aggregate(store, week(), sede="Principal", grupo="601")
        assert on_monday.inactive_count == whole_week.inactive_count == 1
        assert by_group(on_monday.groups[INACTIVE])["601"].count == 1


def test_all_sites_on_monday(store):
    summary = aggregate(store, monday())
    assert summary.received_count == 2
    assert summary.not_received_count == 1
    assert summary.absent_count == 1
    assert summary.total_active_students == 7
    assert summary.total_active_groups == 3
    assert [p.grupo for p in summary.pending_groups] == ["602"]
    assert summary.pending_groups[0].total == 2
    assert summary.overall_percentage == 28.6


def test_overall_percentage_uses_active_students_times_business_days(store):
    summary = aggregate(store, week(), sede="Principal")
    # 5 received (weekend included in the range) over 5 active students x 5 business days
    assert summary.received_count == 5
    assert summary.overall_percentage == 20.0


def test_provisional_groups_are_left_out(store):
    summary = aggregate(store, monday(), sede="Principal")
    assert "2025A" not in set(summary.students['grupo'])
    assert "p7" not in set(summary.events['estudiante_id'])
    assert "1101" in set(exclude_provisional_groups(
        students_frame([make_student("x", "X", "1101")]))['grupo'])


def test_week_without_events_leaves_every_group_pending():
    quiet = FakeStore([make_student("a", "A", "601"), make_student("b", "B", "602"),
                       make_student("c", "C", "301", sede="Primaria")])
    summary = aggregate(quiet, resolve_period("semana", today=datetime.date(2024, 2, 5)))
    assert summary.pending_groups_count == summary.total_active_groups == 3
    assert summary.overall_percentage == 0
    assert summary.total_events == 0


def test_no_active_students_gives_zero_not_nan():
    only_inactive = FakeStore([make_student("a", "A", "601", estado="inactivo")],
                              [make_event("a", "2024-01-08", "recibio")])
    summary = aggregate(only_inactive, monday())
    assert summary.overall_percentage == 0
    assert summary.groups[RECEIVED][0].percentage == 0
    assert summary.groups[INACTIVE][0].percentage == 0
    assert summary.pending_groups_count == 0


def test_pending_groups_stay_within_bounds(store):
    for period in (monday(), week()):
        summary = aggregate(store, period)
        assert 0 <= summary.pending_groups_count <= summary.total_active_groups


def test_breakdowns_are_sorted_by_count_descending(store):
    summary = aggregate(store, week(), sede="Principal")
    counts = [row.count for row in summary.groups[RECEIVED]]
    assert counts == sorted(counts, reverse=True)
    assert summary.groups[RECEIVED][0].grupo == "601"


def test_aggregation_is_repeatable(store):
    first = aggregate(store, week())
    second = aggregate(store, week())
    assert (first.received_count, first.not_received_count, first.absent_count) == \
        (second.received_count, second.not_received_count, second.absent_count)
    assert first.groups == second.groups
    assert first.pending_groups == second.pending_groups
    assert first.events.equals(second.events)


def test_fetch_failure_aborts_the_aggregation(store):
    store.fail_reads = True
    with pytest.raises(AggregationFailed):
        aggregate(store, monday())


def test_summarize_without_store():
    students = students_frame([make_student("a", "A", "601"), make_student("b", "B", "601")])
    events = events_frame([make_event("a", "2024-01-08", ABSENT)])
    summary = summarize(students, events, monday(), grupo="601")
    assert summary.absent_count == 1
    assert summary.pending_groups == []
    assert by_group(summary.groups[ABSENT])["601"].percentage == 50


def test_events_outside_the_period_are_ignored():
    students = students_frame([make_student("a", "A", "601")])
    events = events_frame([make_event("a", "2024-01-07", RECEIVED), make_event("a", "2024-01-09", RECEIVED)])
    summary = summarize(students, events, monday())
    assert summary.received_count == 0


def test_percentage_rounds_half_up():
    assert percentage(1, 8) == 13
    assert percentage(2, 3) == 67
    assert percentage(1, 3, digits=1) == 33.3
    assert percentage(5, 0) == 0


def test_report_guard_blocks_concurrent_runs():
    with report_guard("sede:601:hoy"):
        with pytest.raises(ReportInProgress):
            with report_guard("sede:601:hoy"):
                pass
        with report_guard("sede:602:hoy"):
            pass
    with report_guard("sede:601:hoy"):
        pass


def test_report_guard_releases_after_an_error():
    with pytest.raises(RuntimeError):
        with report_guard("k"):
            raise RuntimeError("boom")
    with report_guard("k"):
        pass


def test_student_history_is_newest_first(store):
    history = student_history(store, "p1", days=30, today=datetime.date(2024, 1, 20))
    assert list(history['fecha']) == ["2024-01-13", "2024-01-09", "2024-01-08"]
    assert recent_receipt_rate(history) == 100.0


def test_student_history_window(store):
    history = student_history(store, "p1", days=5, today=datetime.date(2024, 1, 13))
    assert list(history['fecha']) == ["2024-01-13", "2024-01-09", "2024-01-08"]
    history = student_history(store, "p1", days=4, today=datetime.date(2024, 1, 13))
    assert list(history['fecha']) == ["2024-01-13", "2024-01-09"]


def test_recent_receipt_rate_of_nothing_is_zero():
    assert recent_receipt_rate(events_frame([])) == 0.0


def test_roster_is_read_once_per_aggregation(store):
    aggregate(store, week(), sede="Principal", grupo="601")
    assert store.list_students_calls == 1


def test_user_activity_counts_only_that_users_records():
    students = [make_student("p1", "ANA", "601"), make_student("p2", "BETO", "602")]
    events = [
        make_event("p1", "2024-01-08", "recibio", registrado_por="docente@example.com"),
        make_event("p2", "2024-01-08", "ausente", registrado_por="docente@example.com"),
        make_event("p1", "2024-01-10", "recibio", registrado_por="docente@example.com"),
        make_event("p2", "2024-01-11", "recibio", registrado_por="otro@example.com"),
    ]
    activity = load_user_activity(FakeStore(students, events), "docente@example.com")
    assert activity == UserActivity(total_records=3, active_days=2, groups_served=2,
                                    last_record="2024-01-10")


def test_user_without_records_has_empty_activity(store):
    assert load_user_activity(store, "nuevo@example.com") == UserActivity(0, 0, 0, None)
    assert user_activity(events_frame([]), None).total_records == 0
