from .daily import Daily
from .daily_period import DailyPeriod
from .daily_log import DailyLog
from .habit import Habit
from .habit_period import HabitPeriod
from .habit_log import HabitLog

__all__ = [
    "Daily",
    "DailyPeriod",
    "DailyLog",
    "Habit",
    "HabitPeriod",
    "HabitLog",
]
