from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .errors import InputError
from .models import Interval
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

_SKIP_PREFIXES = ("#", "track", "browser")


def parse_bed_line(line: str, *, lineno: int = 0) -> Interval:
    """Parse one BED line (0-based half-open) into an Interval."""
    fields = line.rstrip("\n").split("\t")
    if len(fields) < 3:
        fields = line.split()
    if len(fields) < 3:
        raise InputError(f"BED line {lineno}: expected at least 3 columns, got {len(fields)}")
    try:
        start = int(fields[1])
        end = int(fields[2])
    except ValueError as e:
        raise InputError(f"BED line {lineno}: start/end must be integers ({e})") from e
    if start < 0 or end <= start:
        raise InputError(f"BED line {lineno}: invalid coordinates {start}-{end}")
    name = fields[3] if len(fields) > 3 and fields[3] not in ("", ".") else None
    return Interval(contig=fields[0], start=start, end=end, name=name)


def load_intervals(path: str | Path) -> List[Interval]:
    """Read candidate regions from a BED (or BED.GZ) file, keeping file order."""
    p = Path(path)
    if not p.exists():
        raise InputError(f"Regions file does not exist: {p}")

    intervals: List[Interval] = []
    with open_textmaybe_gzip(p, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip() or line.startswith(_SKIP_PREFIXES):
                continue
            intervals.append(parse_bed_line(line, lineno=lineno))

    if not intervals:
        raise InputError(f"No intervals found in {p}")
    logger.info("Loaded %d intervals from %s", len(intervals), p)
    return intervals


def write_bed(path: str | Path, intervals: List[Interval]) -> None:
    with open(path, "wt", encoding="utf-8") as fh:
        for iv in intervals:
            fields = [iv.contig, str(iv.start), str(iv.end)]
            if iv.name:
                fields.append(iv.name)
            fh.write("\t".join(fields) + "\n")
