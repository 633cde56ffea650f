"""Workbook layout and I/O limits for the record store and load-time inputs."""

RECORD_SHEET_TITLE: str = "Sheet1"
RECORD_HEADER: tuple[str, ...] = (
    "timestamp",
    "name",
    "phoneHash",
    "idHash",
    "score",
    "total",
    "code",
    "detail",
)
DEFAULT_RESULTS_FILENAME: str = "records.xlsx"

QUESTION_QUOTA_SHEET: str = "Sheet1"
QUESTION_SHEET: str = "Sheet2"
PRIZE_TIER_SHEET: str = "Sheet1"
PRIZE_CODE_SHEET: str = "Sheet2"
RESULTS_PATH_SHEET: str = "Sheet1"

STORE_IO_TIMEOUT_SECONDS: float = 10.0
EXCLUSIVE_REGION_TIMEOUT_SECONDS: float = 30.0
