"""Quiz-related constants shared across the core and server layers."""

QUESTION_TYPE_SINGLE: str = "single"
QUESTION_TYPE_JUDGE: str = "judge"
QUESTION_TYPE_MULTI: str = "multi"
QUESTION_TYPES: tuple[str, ...] = (QUESTION_TYPE_SINGLE, QUESTION_TYPE_JUDGE, QUESTION_TYPE_MULTI)
SINGLE_CHOICE_TYPES: frozenset[str] = frozenset({QUESTION_TYPE_SINGLE, QUESTION_TYPE_JUDGE})

DEFAULT_QUESTION_POINTS: int = 1
IDENTITY_HASH_LENGTH: int = 64
