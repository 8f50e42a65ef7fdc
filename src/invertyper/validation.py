from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

import pysam

from .errors import InputError
from .models import GenotypePrior, Interval

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"
_PRIOR_TOLERANCE = 1e-6


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM exists and has an index; raise InputError with fix instructions."""
    bam = Path(bam_path)
    if not bam.exists():
        raise InputError(f"BAM does not exist: {bam}")
    candidates = [
        bam.with_suffix(bam.suffix + ".bai"),
        bam.with_suffix(".bai"),
        bam.with_suffix(bam.suffix + ".csi"),
    ]
    if any(c.exists() for c in candidates):
        return
    raise InputError("BAM is not indexed. Run: samtools index " + str(bam))


def open_bam(bam_path: str | Path) -> pysam.AlignmentFile:
    """Open an indexed BAM read-only, turning pysam failures into InputError."""
    check_bam_index(bam_path)
    try:
        return pysam.AlignmentFile(str(bam_path), "rb")
    except (OSError, ValueError) as e:
        raise InputError(f"Could not open BAM {bam_path}: {e}") from e


def autosome_lengths(bam: pysam.AlignmentFile, n_autosomes: int = 22) -> List[Tuple[str, int]]:
    """Return (name, length) for the first ``n_autosomes`` contigs in the BAM header.

    Sex chromosomes and unplaced contigs are expected to follow the autosomes
    in the header, as they do in the standard human references.
    """
    names = list(bam.references)
    lengths = list(bam.lengths)
    if len(names) < n_autosomes:
        raise InputError(
            f"BAM header has {len(names)} contigs but {n_autosomes} autosomes are required"
        )
    return list(zip(names[:n_autosomes], (int(x) for x in lengths[:n_autosomes])))


def validate_prior(prior: GenotypePrior | Sequence[float]) -> GenotypePrior:
    """Check that prior weights are finite, non-negative and sum to 1."""
    if isinstance(prior, GenotypePrior):
        weights = [prior.normal, prior.het, prior.hom]
    else:
        weights = [float(x) for x in prior]
        if len(weights) != 3:
            raise InputError(
                f"Prior needs 3 weights (normal, het, hom), got {len(weights)}"
            )

    for w in weights:
        if not math.isfinite(w) or w < 0:
            raise InputError(f"Prior weights must be finite and non-negative: {weights}")
    total = sum(weights)
    if abs(total - 1.0) > _PRIOR_TOLERANCE:
        raise InputError(f"Prior weights must sum to 1 (got {total:.6g})")
    return GenotypePrior(*weights)


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig


def harmonize_interval_contigs(
    intervals: Sequence[Interval], contig_names: Sequence[str]
) -> List[Interval]:
    """Rename interval contigs to the BAM's naming style (chr1 vs 1) when they differ."""
    bam_style = detect_contig_style(contig_names)
    bed_style = detect_contig_style(iv.contig for iv in intervals)
    if bam_style == "unknown" or bed_style == "unknown" or bam_style == bed_style:
        return list(intervals)

    logger.warning(
        "Contig style mismatch detected (regions=%s, BAM=%s). Remapping regions to %s style.",
        bed_style,
        bam_style,
        bam_style,
    )
    return [
        Interval(
            contig=remap_contig(iv.contig, bam_style),
            start=iv.start,
            end=iv.end,
            name=iv.name,
        )
        for iv in intervals
    ]


def check_intervals_in_range(
    intervals: Iterable[Interval], contig_lengths: Sequence[Tuple[str, int]]
) -> None:
    """Raise InputError for the first interval that is not inside a counted contig."""
    lengths: Dict[str, int] = dict(contig_lengths)
    for iv in intervals:
        if iv.contig not in lengths:
            raise InputError(
                f"Interval {iv.label()} is on contig '{iv.contig}', which is not among the "
                f"counted contigs ({', '.join(list(lengths)[:5])}, ...)"
            )
        if iv.start < 0 or iv.end <= iv.start or iv.end > lengths[iv.contig]:
            raise InputError(
                f"Interval {iv.label()} lies outside {iv.contig} (length {lengths[iv.contig]})"
            )
