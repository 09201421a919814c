from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from src.domain.entities.task import Task
from src.domain.value_objects.holiday_calendar import HolidayCalendar
from src.utils.hours_format import format_hours

WINDOW_WORKING_DAYS = 10
WORKING_DAYS_BEFORE_ANCHOR = 4
FAR_DATE_THRESHOLD_DAYS = 30


def _snap_forward(value: date) -> date:
    while value.weekday() >= 5:
        value += timedelta(days=1)
    return value


def _weekdays_from(start: date, count: int) -> List[date]:
    days: List[date] = []
    cursor = start
    while len(days) < count:
        if cursor.weekday() < 5:
            days.append(cursor)
        cursor += timedelta(days=1)
    return days


class WindowDistributionDomainService:
    """タスク工数を表示ウィンドウ内の稼働日へ按分する

    按分は期間全体の稼働日数で均等割りする近似値で、日次の実績とは一致しない。
    """

    def __init__(self, holidays: Optional[HolidayCalendar] = None, window_size: int = WINDOW_WORKING_DAYS):
        if window_size <= WORKING_DAYS_BEFORE_ANCHOR:
            raise ValueError("window_size must be greater than the days before the anchor")
        self.holidays = holidays or HolidayCalendar()
        self.window_size = window_size

    def build_anchor_window(self, tasks: Iterable[Task], today: date) -> List[date]:
        """表示ウィンドウ（平日のみ）を組み立てる

        最も早い開始日/期限日が今日から30日以上離れている場合はその日から始め、
        それ以外は今日を中心にする。
        """
        earliest = self._earliest_date(tasks)
        if earliest is not None and abs((earliest - today).days) > FAR_DATE_THRESHOLD_DAYS:
            return _weekdays_from(_snap_forward(earliest), self.window_size)

        anchor = _snap_forward(today)
        before: List[date] = []
        cursor = anchor
        while len(before) < WORKING_DAYS_BEFORE_ANCHOR:
            cursor -= timedelta(days=1)
            if cursor.weekday() < 5:
                before.append(cursor)
        before.reverse()
        return before + _weekdays_from(anchor, self.window_size - WORKING_DAYS_BEFORE_ANCHOR)

    def distribute(
        self,
        task: Task,
        window: List[date],
        holidays: Optional[HolidayCalendar] = None,
    ) -> Dict[str, float]:
        calendar = holidays or self.holidays
        hours = task.time_estimate if task.time_estimate > 0 else task.time_logged
        if hours <= 0 or not window:
            return {}

        start = task.start_date or task.due_date
        end = task.due_date or task.start_date
        if start is None or end is None:
            return {}
        if start > end:
            start, end = end, start

        span_working_days = self.count_working_days(start, end, calendar)
        if span_working_days == 0:
            return self._fold_onto_single_day(hours, start, end, window, calendar)

        share = hours / span_working_days
        return {
            day.isoformat(): round(share, 2)
            for day in window
            if start <= day <= end and calendar.is_working_day(day)
        }

    def apply(self, tasks: Iterable[Task], window: List[date]) -> None:
        """各タスク（サブタスク含む）の weekly_distribution を埋める"""
        for root in tasks:
            for task in root.walk():
                distribution = self.distribute(task, window)
                task.weekly_distribution = {
                    key: format_hours(value) for key, value in distribution.items()
                }

    @staticmethod
    def count_working_days(start: date, end: date, calendar: HolidayCalendar) -> int:
        count = 0
        cursor = start
        while cursor <= end:
            if calendar.is_working_day(cursor):
                count += 1
            cursor += timedelta(days=1)
        return count

    @staticmethod
    def _fold_onto_single_day(
        hours: float,
        start: date,
        end: date,
        window: List[date],
        calendar: HolidayCalendar,
    ) -> Dict[str, float]:
        # 週末・祝日だけの期間は、ウィンドウと重なる場合に限り1日へ寄せる
        if end < window[0] or start > window[-1]:
            return {}
        working = [day for day in window if calendar.is_working_day(day)]
        if not working:
            return {}
        target = next((day for day in working if day >= start), working[-1])
        return {target.isoformat(): round(hours, 2)}

    @staticmethod
    def _earliest_date(tasks: Iterable[Task]) -> Optional[date]:
        earliest: Optional[date] = None
        for root in tasks:
            for task in root.walk():
                for candidate in (task.start_date, task.due_date):
                    if candidate and (earliest is None or candidate < earliest):
                        earliest = candidate
        return earliest
