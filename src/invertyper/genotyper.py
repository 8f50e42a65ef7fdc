from __future__ import annotations

import logging
import math
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.special import logsumexp
from scipy.stats import binom
from tqdm import tqdm

from .counting import DEFAULT_MIN_MAPQ, DEFAULT_N_AUTOSOMES, count_interval
from .errors import InputError
from .models import (
    GENOTYPES,
    BackgroundEstimate,
    Genotype,
    GenotypeModel,
    Interval,
    IntervalCall,
    PairingMode,
    StrandCounts,
)
from .utils import clamp
from .validation import (
    autosome_lengths,
    check_intervals_in_range,
    harmonize_interval_contigs,
    open_bam,
    validate_prior,
)

logger = logging.getLogger(__name__)

# Keeps every class likelihood non-zero when the background is estimated as exactly 0.
_RATE_EPS = 1e-6


def _guard_rate(p: float) -> float:
    return clamp(p, _RATE_EPS, 1.0 - _RATE_EPS)


def ww_class_rates(
    base_state: str, background: float, het_inverted_fraction: float = 0.5
) -> Dict[Genotype, float]:
    """Expected reverse-read fraction per genotype in the WW/CC composite."""
    b = float(background)
    f = float(het_inverted_fraction)
    if base_state == "WW":
        normal, inverted = b, 1.0 - b
    elif base_state == "CC":
        normal, inverted = 1.0 - b, b
    else:
        raise InputError(f"base_state must be 'WW' or 'CC', got {base_state!r}")
    return {
        Genotype.NORMAL: normal,
        Genotype.HET: f * inverted + (1.0 - f) * normal,
        Genotype.HOM: inverted,
    }


def wc_class_rates(background: float) -> Dict[Genotype, Tuple[float, ...]]:
    """Expected reverse-read fractions per genotype in the phased WC composite.

    Each class maps to equally weighted mixture components: a heterozygous
    inversion on the Watson haplotype turns the region CC, one on the Crick
    haplotype turns it WW.
    """
    b = float(background)
    return {
        Genotype.NORMAL: (0.5,),
        Genotype.HET: (1.0 - b, b),
        Genotype.HOM: (0.5,),
    }


def _log_binom_mixture(counts: StrandCounts, rates: Iterable[float]) -> float:
    terms = [float(binom.logpmf(counts.reverse, counts.total, _guard_rate(p))) for p in rates]
    return float(logsumexp(terms) - math.log(len(terms)))


def genotype_counts(
    ww_counts: StrandCounts,
    wc_counts: Optional[StrandCounts] = None,
    *,
    base_state: str,
    ww_background: float,
    wc_background: Optional[float] = None,
    model: GenotypeModel = GenotypeModel(),
) -> Dict[Genotype, float]:
    """Posterior over genotype classes for one interval's strand counts.

    The reverse-read count in each composite is a binomial observation; the
    composites are independent given the genotype.
    """
    prior = validate_prior(model.prior).as_dict()
    ww_rates = ww_class_rates(base_state, ww_background, model.het_inverted_fraction)
    wc_rates = wc_class_rates(ww_background if wc_background is None else wc_background)

    log_post = np.empty(len(GENOTYPES), dtype=np.float64)
    for i, g in enumerate(GENOTYPES):
        if prior[g] <= 0:
            log_post[i] = -np.inf
            continue
        ll = _log_binom_mixture(ww_counts, (ww_rates[g],))
        if wc_counts is not None:
            ll += _log_binom_mixture(wc_counts, wc_rates[g])
        log_post[i] = math.log(prior[g]) + ll

    post = np.exp(log_post - logsumexp(log_post))
    return {g: float(p) for g, p in zip(GENOTYPES, post)}


def map_genotype(posterior: Dict[Genotype, float]) -> Tuple[Genotype, float]:
    """Return the MAP class; exact ties resolve to normal, then het, then hom."""
    best = GENOTYPES[0]
    for g in GENOTYPES[1:]:
        if posterior[g] > posterior[best]:
            best = g
    return best, posterior[best]


def call_interval(
    interval: Interval,
    ww_counts: StrandCounts,
    wc_counts: Optional[StrandCounts],
    *,
    base_state: str,
    ww_background: float,
    wc_background: Optional[float] = None,
    model: GenotypeModel = GenotypeModel(),
) -> IntervalCall:
    posterior = genotype_counts(
        ww_counts,
        wc_counts,
        base_state=base_state,
        ww_background=ww_background,
        wc_background=wc_background,
        model=model,
    )
    genotype, prob = map_genotype(posterior)
    return IntervalCall(
        interval=interval,
        ww_counts=ww_counts,
        wc_counts=wc_counts,
        posterior=posterior,
        genotype=genotype,
        probability=prob,
        low_confidence=prob < model.confidence,
    )


def _check_model(model: GenotypeModel) -> None:
    validate_prior(model.prior)
    if not 0.0 <= model.het_inverted_fraction <= 1.0:
        raise InputError(
            f"het_inverted_fraction must be within [0, 1], got {model.het_inverted_fraction}"
        )
    if not 0.0 <= model.confidence <= 1.0:
        raise InputError(f"confidence must be within [0, 1], got {model.confidence}")


def genotype_intervals(
    ww_bam_path: str | Path,
    intervals: Sequence[Interval],
    ww_background: BackgroundEstimate,
    *,
    wc_bam_path: Optional[str | Path] = None,
    wc_background: Optional[float] = None,
    model: GenotypeModel = GenotypeModel(),
    pairing: PairingMode = PairingMode.PAIRED,
    min_mapq: int = DEFAULT_MIN_MAPQ,
    n_autosomes: int = DEFAULT_N_AUTOSOMES,
    progress: bool = True,
) -> List[IntervalCall]:
    """Genotype every interval against the WW/CC (and optionally WC/CW) composite.

    All intervals are validated before any counting starts; one bad interval
    fails the whole batch.
    """
    _check_model(model)
    if wc_background is not None and not 0.0 <= wc_background <= 0.5:
        raise InputError(f"wc_background must be within [0, 0.5], got {wc_background}")

    with ExitStack() as stack:
        ww_bam = stack.enter_context(open_bam(ww_bam_path))
        wc_bam = stack.enter_context(open_bam(wc_bam_path)) if wc_bam_path is not None else None

        contigs = autosome_lengths(ww_bam, n_autosomes)
        intervals = harmonize_interval_contigs(intervals, [name for name, _ in contigs])
        check_intervals_in_range(intervals, contigs)
        if wc_bam is not None:
            check_intervals_in_range(intervals, autosome_lengths(wc_bam, n_autosomes))

        it: Iterable[Interval] = intervals
        if progress:
            it = tqdm(intervals, unit="interval", desc="Genotyping")

        calls: List[IntervalCall] = []
        for iv in it:
            ww_counts = count_interval(ww_bam, iv, pairing=pairing, min_mapq=min_mapq)
            wc_counts = (
                count_interval(wc_bam, iv, pairing=pairing, min_mapq=min_mapq)
                if wc_bam is not None
                else None
            )
            call = call_interval(
                iv,
                ww_counts,
                wc_counts,
                base_state=ww_background.base_state,
                ww_background=ww_background.background_rate,
                wc_background=wc_background,
                model=model,
            )
            logger.debug(
                "%s: WW %d+/%d- WC %s -> %s (%.4f)",
                iv.label(),
                ww_counts.forward,
                ww_counts.reverse,
                f"{wc_counts.forward}+/{wc_counts.reverse}-" if wc_counts is not None else "NA",
                call.genotype.value,
                call.probability,
            )
            calls.append(call)

    n_low = sum(1 for c in calls if c.low_confidence)
    logger.info("Genotyped %d intervals (%d below confidence %.2f)", len(calls), n_low, model.confidence)
    return calls
