import gzip
from pathlib import Path

import pytest

from invertyper.errors import InputError
from invertyper.intervals import load_intervals, parse_bed_line
from invertyper.models import Interval


def test_parse_bed_line_with_and_without_name():
    assert parse_bed_line("chr1\t100\t200\n") == Interval("chr1", 100, 200)
    assert parse_bed_line("chr1\t100\t200\tinv1\t0\t+\n") == Interval("chr1", 100, 200, "inv1")
    assert parse_bed_line("chr1 100 200 .") == Interval("chr1", 100, 200)


@pytest.mark.parametrize("line", ["chr1\t100", "chr1\tx\t200", "chr1\t200\t100", "chr1\t-5\t10"])
def test_parse_bed_line_rejects_malformed(line):
    with pytest.raises(InputError):
        parse_bed_line(line, lineno=3)


def test_load_intervals_skips_headers(tmp_path: Path):
    bed = tmp_path / "regions.bed"
    bed.write_text(
        "track name=inv\n# comment\n\nchr2\t10\t20\tb\nchr1\t5\t50\ta\n",
        encoding="utf-8",
    )
    got = load_intervals(bed)
    assert got == [Interval("chr2", 10, 20, "b"), Interval("chr1", 5, 50, "a")]


def test_load_intervals_gzip(tmp_path: Path):
    bed = tmp_path / "regions.bed.gz"
    with gzip.open(bed, "wt") as fh:
        fh.write("chr1\t0\t1000\n")
    assert load_intervals(bed) == [Interval("chr1", 0, 1000)]


def test_load_intervals_empty_or_missing(tmp_path: Path):
    empty = tmp_path / "empty.bed"
    empty.write_text("# nothing\n", encoding="utf-8")
    with pytest.raises(InputError):
        load_intervals(empty)
    with pytest.raises(InputError):
        load_intervals(tmp_path / "missing.bed")
