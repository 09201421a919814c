import math


def format_hours(hours: float) -> str:
    """時間数を "1h 30m" / "45m" 形式の文字列に変換"""
    if hours is None or hours == 0:
        return "0m"
    sign = "-" if hours < 0 else ""
    value = abs(hours)

    if value < 1:
        return f"{sign}{round(value * 60)}m"

    whole = math.floor(value)
    minutes = round((value - whole) * 60)
    if minutes == 60:
        whole += 1
        minutes = 0
    if minutes == 0:
        return f"{sign}{whole}h"
    return f"{sign}{whole}h {minutes}m"
