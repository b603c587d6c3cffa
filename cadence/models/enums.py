import enum


class RepeatType(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class Difficulty(str, enum.Enum):
    trivial = "trivial"
    easy = "easy"
    medium = "medium"
    hard = "hard"


class EntityStatus(str, enum.Enum):
    active = "active"
    archived = "archived"


class LogStatus(str, enum.Enum):
    success = "success"
    fail = "fail"


class EntityKind(str, enum.Enum):
    daily = "daily"
    habit = "habit"
