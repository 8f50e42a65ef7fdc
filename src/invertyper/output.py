from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .models import GENOTYPES, BackgroundEstimate, IntervalCall
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

CALL_COLUMNS = [
    "contig",
    "start",
    "end",
    "name",
    "ww_forward",
    "ww_reverse",
    "wc_forward",
    "wc_reverse",
    "genotype",
    "probability",
    "p_normal",
    "p_het_inverted",
    "p_hom_inverted",
    "low_confidence",
]


def call_to_row(call: IntervalCall) -> List[str]:
    iv = call.interval
    wc_f = str(call.wc_counts.forward) if call.wc_counts is not None else "NA"
    wc_r = str(call.wc_counts.reverse) if call.wc_counts is not None else "NA"
    return [
        iv.contig,
        str(iv.start),
        str(iv.end),
        iv.name or ".",
        str(call.ww_counts.forward),
        str(call.ww_counts.reverse),
        wc_f,
        wc_r,
        call.genotype.value,
        f"{call.probability:.6f}",
        *(f"{call.posterior[g]:.6f}" for g in GENOTYPES),
        str(int(call.low_confidence)),
    ]


def write_calls_tsv(calls: Sequence[IntervalCall], path: str | Path) -> Path:
    """Write one tab-separated row per interval (gzip if the path ends in .gz)."""
    out = Path(path)
    with open_textmaybe_gzip(out, "wt") as fh:
        fh.write("\t".join(CALL_COLUMNS) + "\n")
        for call in calls:
            fh.write("\t".join(call_to_row(call)) + "\n")
    logger.info("Wrote %d calls to %s", len(calls), out)
    return out


def summarize_calls(
    calls: Sequence[IntervalCall],
    *,
    background: BackgroundEstimate,
    wc_background: float | None,
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """Machine-readable run summary (counts per genotype plus the model inputs)."""
    genotype_counts = {g.value: 0 for g in GENOTYPES}
    for c in calls:
        genotype_counts[c.genotype.value] += 1
    return {
        "background": asdict(background),
        "wc_background": wc_background,
        "params": params,
        "counts": {
            "intervals": len(calls),
            "low_confidence": sum(1 for c in calls if c.low_confidence),
            "genotypes": genotype_counts,
        },
    }
