import re
from dataclasses import dataclass
from datetime import date
from typing import FrozenSet, Iterable, Tuple

_DAY_MONTH = re.compile(r"^(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


@dataclass(frozen=True)
class HolidayCalendar:
    """祝日カレンダーのバリューオブジェクト

    祝日は日/月で照合する（毎年同じ日付として扱う）。
    "DD/MM"・"DD/MM/YYYY"・"YYYY-MM-DD" の各形式を受け付け、解釈できない値は無視する。
    """
    day_months: FrozenSet[Tuple[int, int]] = frozenset()

    @classmethod
    def from_strings(cls, values: Iterable[str]) -> "HolidayCalendar":
        parsed = set()
        for value in values or ():
            key = cls._parse(value)
            if key:
                parsed.add(key)
        return cls(frozenset(parsed))

    @staticmethod
    def _parse(value: str) -> "Tuple[int, int] | None":
        if not value:
            return None
        text = value.strip()
        match = _DAY_MONTH.match(text)
        if match:
            day, month = int(match.group(1)), int(match.group(2))
        else:
            match = _ISO_DATE.match(text)
            if not match:
                return None
            month, day = int(match.group(2)), int(match.group(3))
        if not (1 <= month <= 12 and 1 <= day <= 31):
            return None
        return day, month

    def is_holiday(self, value: date) -> bool:
        return (value.day, value.month) in self.day_months

    def is_working_day(self, value: date) -> bool:
        return value.weekday() < 5 and not self.is_holiday(value)

    def __len__(self) -> int:
        return len(self.day_months)
