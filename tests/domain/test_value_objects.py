from datetime import date

import pytest

from src.domain.exceptions import ConfigurationError
from src.domain.value_objects.holiday_calendar import HolidayCalendar
from src.domain.value_objects.source_spec import SourceKind, SourceSpec
from src.domain.value_objects.sync_config import WorkloadSyncConfig


def test_holiday_calendar_parses_supported_formats():
    calendar = HolidayCalendar.from_strings(["25/12", "01/01/2024", "2024-04-21", "garbage", ""])

    assert len(calendar) == 3
    assert calendar.is_holiday(date(2030, 12, 25))
    assert calendar.is_holiday(date(2025, 1, 1))
    assert calendar.is_holiday(date(2024, 4, 21))
    assert not calendar.is_working_day(date(2024, 12, 25))
    assert not calendar.is_working_day(date(2024, 1, 13))
    assert calendar.is_working_day(date(2024, 1, 15))


def test_source_spec_dedupes_and_validates():
    spec = SourceSpec.lists(["a", " b ", "a", ""])

    assert spec.ids == ("a", "b")
    assert spec.source_keys() == ("list:a", "list:b")
    with pytest.raises(ValueError):
        SourceSpec.views([])
    with pytest.raises(ValueError):
        SourceSpec(SourceKind.WORKSPACE, ("1", "2"))


def test_sync_config_source_precedence():
    config = WorkloadSyncConfig(token="t", workspace_id="w", list_ids=("l1",), view_ids=("v1",))

    assert config.source_spec().kind == SourceKind.VIEW
    assert WorkloadSyncConfig(token="t", workspace_id="w", list_ids=("l1",)).source_spec().kind == SourceKind.LIST
    assert WorkloadSyncConfig(token="t", workspace_id="w").source_spec().kind == SourceKind.WORKSPACE


def test_sync_config_requires_token_and_source():
    with pytest.raises(ConfigurationError):
        WorkloadSyncConfig(list_ids=("l1",)).validate()
    with pytest.raises(ConfigurationError):
        WorkloadSyncConfig(token="t").validate()
