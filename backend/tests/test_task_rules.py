# tests/test_task_rules.py

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from taskboard.services.task_rules import (
    MAX_FILE_SIZE,
    TaskRuleError,
    check_attachment_capacity,
    is_due_soon,
    parse_recurrence,
    resolve_status,
    sort_summaries,
    today_utc,
    validate_description,
    validate_due_date,
    validate_file_name,
    validate_file_size,
    validate_file_type,
    validate_priority,
    validate_status,
    validate_title,
)
from taskboard.services.task_types import (
    FileType,
    RecurrenceType,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    TaskSummary,
)

TODAY = date(2026, 3, 10)


def make_task(**overrides) -> TaskRecord:
    fields = dict(
        id="t",
        account_id=1,
        user_id=1,
        title="Write report",
        description=None,
        due_date=None,
        priority=TaskPriority.MEDIUM,
        status=TaskStatus.PENDING,
        recurrence_config=None,
        is_draft=False,
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        updated_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return TaskRecord(**fields)


def error_code(fn, *args) -> str:
    with pytest.raises(TaskRuleError) as exc:
        fn(*args)
    return exc.value.code


# ---- title / description ----

@pytest.mark.parametrize("title", [None, "", "    "])
def test_missing_or_blank_title_is_required(title):
    assert error_code(validate_title, title) == "titleRequired"


@pytest.mark.parametrize("title", ["ab", "  ab  ", "x"])
def test_short_title_rejected_after_trim(title):
    assert error_code(validate_title, title) == "titleTooShort"


def test_title_length_bounds():
    assert validate_title("abc") == "abc"
    assert validate_title("a" * 100) == "a" * 100
    assert error_code(validate_title, "a" * 101) == "titleTooLong"


def test_title_is_trimmed():
    assert validate_title("  Pay rent  ") == "Pay rent"


def test_surrounding_whitespace_does_not_count_towards_max_length():
    assert validate_title("  " + "a" * 100 + "  ") == "a" * 100


def test_description_limits():
    assert validate_description(None) is None
    assert validate_description("") is None
    assert validate_description("d" * 1000) == "d" * 1000
    assert error_code(validate_description, "d" * 1001) == "descriptionTooLong"
    assert error_code(validate_description, "d" * 501, 500) == "descriptionTooLong"


# ---- due date ----

def test_due_date_today_is_accepted():
    assert validate_due_date(TODAY, TODAY) == TODAY


def test_due_date_yesterday_is_rejected():
    assert error_code(validate_due_date, TODAY - timedelta(days=1), TODAY) == "dueDateInPast"


def test_due_date_compares_at_day_granularity():
    early_today = datetime(2026, 3, 10, 0, 0, 1)
    assert validate_due_date(early_today, TODAY) == TODAY


def test_today_utc_converts_offsets():
    late_evening_in_new_york = datetime(2026, 3, 9, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert today_utc(late_evening_in_new_york) == date(2026, 3, 10)


# ---- priority / status ----

def test_priority_defaults_to_medium():
    assert validate_priority(None) is TaskPriority.MEDIUM


@pytest.mark.parametrize("value", [-1, 3, True, "2", 1.0])
def test_invalid_priority(value):
    assert error_code(validate_priority, value) == "invalidPriority"


@pytest.mark.parametrize("value", [-1, 5, False, "1"])
def test_invalid_status(value):
    assert error_code(validate_status, value) == "invalidStatus"


def test_valid_status():
    assert validate_status(4) is TaskStatus.CANCELLED


# ---- recurrence ----

@pytest.mark.parametrize("raw", [None, "", {}, "{}"])
def test_empty_recurrence_clears(raw):
    assert parse_recurrence(raw, TODAY) is None


def test_recurrence_accepted_and_normalised():
    config = parse_recurrence({"type": "weekly", "interval": 2, "end_date": "2026-06-01"}, TODAY)
    assert config.type is RecurrenceType.WEEKLY
    assert config.interval == 2
    assert config.end_date == date(2026, 6, 1)


def test_recurrence_from_json_text():
    config = parse_recurrence('{"type": "daily", "interval": 1}', TODAY)
    assert config.type is RecurrenceType.DAILY
    assert config.end_date is None


@pytest.mark.parametrize(
    "raw, code",
    [
        ({"type": "fortnightly", "interval": 1}, "invalidRecurrenceType"),
        ({"interval": 1}, "invalidRecurrenceType"),
        ({"type": "daily", "interval": 0}, "invalidRecurrenceInterval"),
        ({"type": "daily", "interval": 366}, "invalidRecurrenceInterval"),
        ({"type": "daily", "interval": "3"}, "invalidRecurrenceInterval"),
        ({"type": "daily"}, "invalidRecurrenceInterval"),
        ({"type": "daily", "interval": 1, "end_date": "2026-03-10"}, "invalidRecurrenceEndDate"),
        ({"type": "daily", "interval": 1, "end_date": "2026-01-01"}, "invalidRecurrenceEndDate"),
        ({"type": "daily", "interval": 1, "end_date": "next week"}, "invalidRecurrenceConfig"),
        ("{not json", "invalidRecurrenceConfig"),
        ("[1, 2]", "invalidRecurrenceConfig"),
        (42, "invalidRecurrenceConfig"),
    ],
)
def test_recurrence_rejections(raw, code):
    assert error_code(parse_recurrence, raw, TODAY) == code


def test_recurrence_interval_bounds_inclusive():
    assert parse_recurrence({"type": "yearly", "interval": 1}, TODAY).interval == 1
    assert parse_recurrence({"type": "yearly", "interval": 365}, TODAY).interval == 365


# ---- status lifecycle ----

def test_leaving_draft_forces_pending():
    draft = make_task(is_draft=True, status=TaskStatus.DRAFT)
    assert resolve_status(draft, False, None) is TaskStatus.PENDING


def test_explicit_status_wins_over_draft_exit():
    draft = make_task(is_draft=True, status=TaskStatus.DRAFT)
    assert resolve_status(draft, False, TaskStatus.IN_PROGRESS) is TaskStatus.IN_PROGRESS


def test_status_unchanged_without_draft_exit():
    task = make_task(status=TaskStatus.IN_PROGRESS)
    assert resolve_status(task, False, None) is TaskStatus.IN_PROGRESS
    assert resolve_status(task, None, None) is TaskStatus.IN_PROGRESS


def test_completed_may_reopen():
    task = make_task(status=TaskStatus.COMPLETED)
    assert resolve_status(task, None, TaskStatus.PENDING) is TaskStatus.PENDING


# ---- attachments ----

@pytest.mark.parametrize("kind", ["pdf", "doc", "docx", "jpg", "png"])
def test_allowed_file_types(kind):
    assert validate_file_type(kind) is FileType(kind)


@pytest.mark.parametrize("kind", ["exe", "PDF", "jpeg", ""])
def test_rejected_file_types(kind):
    assert error_code(validate_file_type, kind) == "invalidFileFormat"


def test_file_size_bounds():
    assert validate_file_size(1) == 1
    assert validate_file_size(MAX_FILE_SIZE) == MAX_FILE_SIZE
    assert error_code(validate_file_size, 0) == "fileTooLarge"
    assert error_code(validate_file_size, MAX_FILE_SIZE + 1) == "fileTooLarge"


def test_attachment_capacity():
    check_attachment_capacity(4)
    assert error_code(check_attachment_capacity, 5) == "tooManyAttachments"


# ---- due soon / ordering ----

def test_due_soon_window():
    assert is_due_soon(make_task(due_date=TODAY), TODAY)
    assert is_due_soon(make_task(due_date=TODAY + timedelta(days=1)), TODAY)
    assert not is_due_soon(make_task(due_date=TODAY + timedelta(days=2)), TODAY)
    assert not is_due_soon(make_task(due_date=None), TODAY)


@pytest.mark.parametrize("status", [TaskStatus.COMPLETED, TaskStatus.CANCELLED])
def test_closed_tasks_are_never_due_soon(status):
    assert not is_due_soon(make_task(due_date=TODAY, status=status), TODAY)


def test_sort_drafts_then_priority_then_due_date():
    a = make_task(id="A", is_draft=True, status=TaskStatus.DRAFT, priority=TaskPriority.HIGH,
                  due_date=TODAY + timedelta(days=1))
    b = make_task(id="B", priority=TaskPriority.HIGH, due_date=TODAY)
    c = make_task(id="C", priority=TaskPriority.MEDIUM, due_date=TODAY)
    ordered = sort_summaries([TaskSummary(t, False) for t in (c, b, a)])
    assert [s.task.id for s in ordered] == ["A", "B", "C"]


def test_sort_null_due_dates_last_then_newest_first():
    base = datetime(2026, 3, 1, tzinfo=timezone.utc)
    no_due_old = make_task(id="old", created_at=base)
    no_due_new = make_task(id="new", created_at=base + timedelta(hours=1))
    dated = make_task(id="dated", due_date=TODAY + timedelta(days=30))
    ordered = sort_summaries([TaskSummary(t, False) for t in (no_due_old, dated, no_due_new)])
    assert [s.task.id for s in ordered] == ["dated", "new", "old"]


@pytest.mark.parametrize("name", ["report.pdf", "Q1 report (final).docx", ".hidden.png", "a" * 255])
def test_display_file_names_accepted(name):
    assert validate_file_name(name) == name


@pytest.mark.parametrize("name", ["", ".", "..", " .. ", "../x.pdf", "dir/x.pdf", "dir\\x.pdf", "a" * 256, None])
def test_path_like_file_names_rejected(name):
    assert error_code(validate_file_name, name) == "invalidFileFormat"
