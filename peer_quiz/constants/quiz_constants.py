"""Quiz-related constants shared by the core and the server."""

DEFAULT_TIME_LIMIT_SECONDS: int = 30
MIN_QUESTIONS: int = 1
MAX_QUESTIONS: int = 10
MIN_OPTIONS: int = 2
MAX_OPTIONS: int = 6

# Points by rank among correct answers, fastest first. Ranks past the end score 0.
POINTS_BY_RANK: tuple[int, ...] = (5, 4, 3, 2)

MAX_GROUPS: int = 4
ROOM_CODE_LENGTH: int = 6
ROOM_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
