"""Static metadata describing Prize Quiz."""

APP_NAME = "Prize Quiz"
APP_VERSION = "0.1.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "Prize Quiz runs a walk-up knowledge quiz: participants answer a shuffled question set "
    "from their phone and may receive a tiered prize code. Every attempt is recorded in a workbook."
)
