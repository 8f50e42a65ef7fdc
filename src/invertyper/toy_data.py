"""Synthetic Strand-seq composite files for demos and tests.

Reads are simulated per fragment: the first mate's strand is drawn from the
expected reverse fraction of the region it falls into, the second mate is placed
downstream on the opposite strand. A small share of reads is made low-MAPQ or
flagged as duplicate so that the read filters have something to do.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pysam

from .intervals import write_bed
from .models import Genotype, Interval
from .utils import ensure_outdir, write_json

_READ_LEN = 50
_MATE_OFFSET = 250
_LOW_MAPQ_EVERY = 25
_DUPLICATE_EVERY = 40

TOY_CONTIGS: Tuple[Tuple[str, int], ...] = (
    ("chr1", 200_000),
    ("chr2", 200_000),
    ("chrX", 100_000),
)
TOY_N_AUTOSOMES = 2
TOY_BINSIZE = 10_000


def _make_read(
    name: str,
    ref_id: int,
    start0: int,
    *,
    reverse: bool,
    paired: bool,
    read1: bool = True,
    mate_start0: int = 0,
    mapq: int = 60,
    duplicate: bool = False,
) -> pysam.AlignedSegment:
    flag = 0
    if paired:
        flag |= 0x1 | 0x2 | (0x40 if read1 else 0x80)
        if not reverse:
            flag |= 0x20
    if reverse:
        flag |= 0x10
    if duplicate:
        flag |= 0x400

    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = "A" * _READ_LEN
    a.flag = flag
    a.reference_id = ref_id
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, _READ_LEN)]
    a.query_qualities = pysam.qualitystring_to_array("I" * _READ_LEN)
    if paired:
        a.next_reference_id = ref_id
        a.next_reference_start = mate_start0
        span = abs(mate_start0 - start0) + _READ_LEN
        a.template_length = span if start0 <= mate_start0 else -span
    return a


def _region_rate(
    contig: str,
    pos0: int,
    base_rate: float,
    regions: Sequence[Tuple[Interval, float]],
) -> float:
    for iv, rate in regions:
        if iv.contig == contig and iv.start <= pos0 < iv.end:
            return rate
    return base_rate


def simulate_composite(
    bam_path: str | Path,
    *,
    contigs: Sequence[Tuple[str, int]] = TOY_CONTIGS,
    reverse_rate: float,
    regions: Sequence[Tuple[Interval, float]] = (),
    read_spacing: int = 50,
    paired: bool = True,
    seed: int = 7,
) -> Path:
    """Write a sorted, indexed BAM whose first mates are reverse with ``reverse_rate``.

    ``regions`` overrides the rate inside given intervals, which is how
    inversions are injected.
    """
    rng = random.Random(seed)
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in contigs],
    }

    reads: List[pysam.AlignedSegment] = []
    n = 0
    for ref_id, (contig, length) in enumerate(contigs):
        for start0 in range(0, length - _READ_LEN - _MATE_OFFSET, read_spacing):
            start0 += rng.randrange(read_spacing)
            mate0 = start0 + _MATE_OFFSET
            rate = _region_rate(contig, start0, reverse_rate, regions)
            reverse = rng.random() < rate
            mapq = 5 if n % _LOW_MAPQ_EVERY == 0 else 60
            duplicate = n % _DUPLICATE_EVERY == 1
            name = f"frag{n}"
            reads.append(
                _make_read(
                    name,
                    ref_id,
                    start0,
                    reverse=reverse,
                    paired=paired,
                    read1=True,
                    mate_start0=mate0,
                    mapq=mapq,
                    duplicate=duplicate,
                )
            )
            if paired:
                reads.append(
                    _make_read(
                        name,
                        ref_id,
                        mate0,
                        reverse=not reverse,
                        paired=True,
                        read1=False,
                        mate_start0=start0,
                        mapq=mapq,
                        duplicate=duplicate,
                    )
                )
            n += 1

    reads.sort(key=lambda r: (r.reference_id, r.reference_start))

    out = Path(bam_path)
    with pysam.AlignmentFile(str(out), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(out))
    return out


def ww_region_rates(
    inversions: Dict[Interval, Genotype], background: float
) -> List[Tuple[Interval, float]]:
    rates = {Genotype.NORMAL: background, Genotype.HET: 0.5, Genotype.HOM: 1.0 - background}
    return [(iv, rates[g]) for iv, g in inversions.items()]


def wc_region_rates(
    inversions: Dict[Interval, Genotype], background: float
) -> List[Tuple[Interval, float]]:
    # Phased WC composite: a het inversion on the Watson haplotype makes the region CC.
    rates = {Genotype.NORMAL: 0.5, Genotype.HET: 1.0 - background, Genotype.HOM: 0.5}
    return [(iv, rates[g]) for iv, g in inversions.items()]


def make_toy_data(
    *,
    outdir: str | Path,
    background: float = 0.05,
    paired: bool = True,
    seed: int = 7,
    inversions: Optional[Dict[Interval, Genotype]] = None,
) -> Dict[str, Any]:
    """Create WW and WC composite BAMs plus a BED of candidate regions.

    The outputs include:
    - ww_composite.bam (+ .bai)
    - wc_composite.bam (+ .bai)
    - regions.bed (one hom, one het and one non-inverted region)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    if inversions is None:
        inversions = {
            Interval("chr1", 50_000, 70_000, "inv_hom"): Genotype.HOM,
            Interval("chr2", 100_000, 120_000, "inv_het"): Genotype.HET,
            Interval("chr1", 150_000, 170_000, "ref_region"): Genotype.NORMAL,
        }

    ww_bam = simulate_composite(
        outdir_p / "ww_composite.bam",
        reverse_rate=background,
        regions=ww_region_rates(inversions, background),
        paired=paired,
        seed=seed,
    )
    wc_bam = simulate_composite(
        outdir_p / "wc_composite.bam",
        reverse_rate=0.5,
        regions=wc_region_rates(inversions, background),
        paired=paired,
        seed=seed + 1,
    )

    regions_bed = outdir_p / "regions.bed"
    write_bed(regions_bed, list(inversions))

    summary = {
        "ww_bam": str(ww_bam),
        "wc_bam": str(wc_bam),
        "regions_bed": str(regions_bed),
        "background": background,
        "binsize": TOY_BINSIZE,
        "n_autosomes": TOY_N_AUTOSOMES,
        "truth": {iv.label(): g.value for iv, g in inversions.items()},
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
