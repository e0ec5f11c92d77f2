# recruzy/utils/sanitizers.py
from datetime import datetime

import unidecode

MAX_FILENAME_PART_LENGTH = 64


def sanitize_filename(name_part: str) -> str:
    """Transliterates to ASCII and keeps only [A-Za-z0-9_-]."""
    if not name_part or not isinstance(name_part, str):
        return "Unknown"

    ascii_name = unidecode.unidecode(name_part)
    cleaned = "".join(c if c.isalnum() or c in "_-" else "_" for c in ascii_name)
    cleaned = cleaned.strip("_")[:MAX_FILENAME_PART_LENGTH]
    return cleaned or "Unknown"


def report_filename(username: str, generated_at: datetime, extension: str = "csv") -> str:
    """Имя файла отчета: report_<username>_<YYYYMMDD>.csv"""
    return f"report_{sanitize_filename(username)}_{generated_at:%Y%m%d}.{extension}"
