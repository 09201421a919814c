from datetime import date, datetime, timezone

from src.domain.services.task_normalizer_domain_service import (
    TaskNormalizerDomainService,
    resolve_alias,
)

HOUR_MS = 3_600_000
REFERENCE = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


def _ms(day: date) -> str:
    return str(int(datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc).timestamp() * 1000))


def _raw(
    task_id: str,
    *,
    name: str | None = None,
    status="in progress",
    parent: str | None = None,
    estimate_h: float | None = None,
    logged_h: float | None = None,
    assignees=None,
    due: date | None = None,
    start: date | None = None,
    priority=None,
    list_name: str = "Backend",
    orderindex=None,
) -> dict:
    return {
        "id": task_id,
        "name": name or f"Task {task_id}",
        "status": status,
        "priority": priority,
        "assignees": assignees or [],
        "start_date": _ms(start) if start else None,
        "due_date": _ms(due) if due else None,
        "date_closed": None,
        "time_estimate": int(estimate_h * HOUR_MS) if estimate_h is not None else None,
        "time_spent": int(logged_h * HOUR_MS) if logged_h is not None else None,
        "parent": parent,
        "list": {"name": list_name},
        "tags": [],
        "orderindex": orderindex,
    }


def test_rollup_uses_subtask_sums_when_parent_has_no_estimate():
    service = TaskNormalizerDomainService()
    raw = [
        _raw("P", estimate_h=0, logged_h=0),
        _raw("S1", parent="P", estimate_h=5, logged_h=3),
        _raw("S2", parent="P", estimate_h=0, logged_h=4),
    ]

    tasks = service.normalize(raw, reference_time=REFERENCE)

    assert [t.id for t in tasks] == ["P"]
    parent = tasks[0]
    assert parent.time_estimate == 5
    assert parent.time_logged == 7
    assert parent.remaining == -2
    assert {s.id for s in parent.subtasks} == {"S1", "S2"}
    assert all(s.is_subtask for s in parent.subtasks)


def test_rollup_keeps_own_estimate_and_takes_max_logged():
    service = TaskNormalizerDomainService()
    raw = [
        _raw("P", estimate_h=20, logged_h=10),
        _raw("S1", parent="P", estimate_h=5, logged_h=3),
        _raw("S2", parent="P", estimate_h=6, logged_h=2),
    ]

    parent = service.normalize(raw, reference_time=REFERENCE)[0]

    assert parent.time_estimate == 20
    assert parent.time_logged == 10
    assert parent.remaining == 10


def test_nested_subtasks_roll_up_bottom_first():
    service = TaskNormalizerDomainService()
    raw = [
        _raw("G", parent="S", estimate_h=3, logged_h=1),
        _raw("S", parent="P", estimate_h=0, logged_h=0),
        _raw("P", estimate_h=0, logged_h=0),
    ]

    parent = service.normalize(raw, reference_time=REFERENCE)[0]

    assert parent.id == "P"
    assert parent.time_estimate == 3
    assert parent.subtasks[0].time_estimate == 3
    assert parent.subtasks[0].subtasks[0].id == "G"


def test_orphan_subtask_is_promoted_not_dropped():
    service = TaskNormalizerDomainService()
    batch = service.normalize_batch(
        [_raw("A"), _raw("B", parent="missing", estimate_h=2)],
        reference_time=REFERENCE,
    )

    ids = [t.id for t in batch.tasks]
    assert sorted(ids) == ["A", "B"]
    orphan = next(t for t in batch.tasks if t.id == "B")
    assert orphan.is_subtask is False
    assert batch.promoted_orphans == ["B"]


def test_parent_cycle_is_promoted_with_warning():
    service = TaskNormalizerDomainService()
    batch = service.normalize_batch(
        [_raw("A", parent="B"), _raw("B", parent="A")],
        reference_time=REFERENCE,
    )

    all_ids = [task.id for root in batch.tasks for task in root.walk()]
    assert sorted(all_ids) == ["A", "B"]
    assert batch.warnings


def test_normalization_is_idempotent():
    service = TaskNormalizerDomainService()
    raw = [
        _raw("P", estimate_h=0, assignees=[{"username": "alice"}]),
        _raw("S1", parent="P", estimate_h=5, logged_h=3, due=date(2024, 1, 10)),
        _raw("X", status={"status": "complete"}, estimate_h=1),
    ]

    first = [t.to_dict() for t in service.normalize(raw, {"alice": "Alice"}, REFERENCE)]
    second = [t.to_dict() for t in service.normalize(raw, {"alice": "Alice"}, REFERENCE)]

    assert first == second


def test_status_shapes_are_canonicalized():
    service = TaskNormalizerDomainService()
    tasks = service.normalize(
        [
            _raw("1", status="in review", orderindex="1"),
            _raw("2", status={"status": "Complete", "type": "closed"}, orderindex="2"),
            _raw("3", status=None, orderindex="3"),
        ],
        reference_time=REFERENCE,
    )

    assert [t.status for t in tasks] == ["IN REVIEW", "COMPLETE", "TO DO"]
    assert tasks[1].is_completed


def test_malformed_record_is_skipped_and_batch_continues():
    service = TaskNormalizerDomainService()
    batch = service.normalize_batch(
        [_raw("ok"), _raw("bad", status=["not", "valid"]), {"name": "no id"}],
        reference_time=REFERENCE,
    )

    assert [t.id for t in batch.tasks] == ["ok"]
    assert "bad" in batch.skipped
    assert len(batch.skipped) == 2


def test_time_and_dates_are_converted():
    service = TaskNormalizerDomainService()
    task = service.normalize(
        [_raw("1", estimate_h=1.5, logged_h=0.25, due=date(2024, 1, 20), start=date(2024, 1, 15))],
        reference_time=REFERENCE,
    )[0]

    assert task.time_estimate == 1.5
    assert task.time_logged == 0.25
    assert task.due_date == date(2024, 1, 20)
    assert task.start_date == date(2024, 1, 15)


def test_overdue_and_negative_budget_flags_ignore_completed_tasks():
    service = TaskNormalizerDomainService()
    tasks = service.normalize(
        [
            _raw("open", due=date(2024, 1, 10), estimate_h=1, logged_h=2, orderindex="1"),
            _raw("done", status="done", due=date(2024, 1, 10), estimate_h=1, logged_h=2, orderindex="2"),
        ],
        reference_time=REFERENCE,
    )

    open_task, done_task = tasks
    assert open_task.is_overdue and open_task.has_negative_budget
    assert not done_task.is_overdue and not done_task.has_negative_budget


def test_assignees_are_resolved_and_raw_names_kept():
    service = TaskNormalizerDomainService()
    task = service.normalize(
        [_raw("1", assignees=[{"username": "alice.dev"}, {"email": "bob@example.com"}])],
        {"alice": "Alice Silva", "bob@example.com": "Bob"},
        REFERENCE,
    )[0]

    assert task.assignee == "Alice Silva / Bob"
    assert task.raw_assignee == "alice.dev, bob@example.com"


def test_unassigned_task_uses_label():
    service = TaskNormalizerDomainService(unassigned_label="Sem responsável")
    task = service.normalize([_raw("1")], reference_time=REFERENCE)[0]

    assert task.assignee == "Sem responsável"
    assert task.raw_assignee == ""
    assert not task.has_assignee


def test_resolve_alias_precedence():
    aliases = {"ana": "Ana Souza", "anabela": "Anabela Costa"}

    assert resolve_alias("Anabela", aliases) == "Anabela Costa"
    assert resolve_alias("ana.s", aliases) == "Ana Souza"
    assert resolve_alias("carol", aliases) == "carol"
    assert resolve_alias("", aliases) == ""


def test_tasks_are_ordered_by_orderindex_then_due_then_name():
    service = TaskNormalizerDomainService()
    tasks = service.normalize(
        [
            _raw("c", name="Charlie", due=date(2024, 1, 30)),
            _raw("b", name="Bravo", due=date(2024, 1, 20)),
            _raw("a", name="Alpha", orderindex="5"),
        ],
        reference_time=REFERENCE,
    )

    assert [t.id for t in tasks] == ["a", "b", "c"]
