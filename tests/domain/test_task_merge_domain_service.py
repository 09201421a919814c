from src.domain.services.task_merge_domain_service import TaskMergeDomainService


def _record(task_id: str, name: str = "Task", status: str = "open", **extra) -> dict:
    record = {"id": task_id, "name": name, "status": {"status": status}, "tags": [], "assignees": []}
    record.update(extra)
    return record


def test_merge_replaces_matching_ids_and_appends_new():
    service = TaskMergeDomainService()
    existing = [_record(str(i)) for i in range(5)]
    delta = [
        _record("1", name="Renamed"),
        _record("3"),
        _record("new-a"),
        _record("new-b"),
    ]

    result = service.merge(existing, delta)

    assert len(result.records) == 5 + 2
    assert [r["id"] for r in result.records] == ["0", "1", "2", "3", "4", "new-a", "new-b"]
    assert result.records[1]["name"] == "Renamed"
    assert result.added == 2
    assert result.updated == 1
    assert result.unchanged == 1


def test_has_changed_tracks_relevant_fields_only():
    service = TaskMergeDomainService()
    base = _record("1", time_estimate=3600000, tags=[{"name": "a"}, {"name": "b"}])

    reordered = _record("1", time_estimate="3600000", tags=[{"name": "b"}, {"name": "a"}], url="x")
    new_status = _record("1", status="done", time_estimate=3600000, tags=[{"name": "a"}, {"name": "b"}])
    new_assignee = _record(
        "1",
        time_estimate=3600000,
        tags=[{"name": "a"}, {"name": "b"}],
        assignees=[{"email": "alice@example.com"}],
    )

    assert not service.has_changed(base, reordered)
    assert service.has_changed(base, new_status)
    assert service.has_changed(base, new_assignee)


def test_merge_skips_non_object_delta_records():
    service = TaskMergeDomainService()

    result = service.merge([_record("1")], [_record("2"), "garbage", None, 42])

    assert [r["id"] for r in result.records] == ["1", "2"]
    assert result.added == 1


def test_merge_drops_non_object_records_from_existing():
    service = TaskMergeDomainService()

    result = service.merge([_record("1"), "garbage", None], [_record("1", name="Renamed")])

    assert [r["id"] for r in result.records] == ["1"]
    assert result.records[0]["name"] == "Renamed"
    assert result.updated == 1


def test_merge_does_not_mutate_existing_list():
    service = TaskMergeDomainService()
    existing = [_record("1")]

    service.merge(existing, [_record("2")])

    assert len(existing) == 1
