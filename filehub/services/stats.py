from collections import Counter
from typing import Iterable

from filehub.models import FileRecord


def storage_totals(records: Iterable[FileRecord]) -> dict:
    total_files = 0
    total_bytes = 0
    uploaders: Counter = Counter()
    for record in records:
        total_files += 1
        total_bytes += record.size
        uploaders[record.uploaded_by] += 1

    return {
        "total_files": total_files,
        "total_bytes": total_bytes,
        "uploaders": dict(uploaders),
    }
