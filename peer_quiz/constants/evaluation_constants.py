"""Evaluation scoring constants."""

RATING_LEVEL_COUNT: int = 4
MIN_RATING_LEVEL: int = 0
MAX_RATING_LEVEL: int = RATING_LEVEL_COUNT

HOST_EVALUATION_CAP: float = 40.0
PEER_EVALUATION_CAP: float = 20.0

PEER_AVERAGE_DECIMALS: int = 1
TEACHER_AVERAGE_DECIMALS: int = 2
