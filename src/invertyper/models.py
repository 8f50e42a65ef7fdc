from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


class PairingMode(str, enum.Enum):
    """Selects which read predicate is used for strand counting."""

    PAIRED = "paired"
    UNPAIRED = "unpaired"


class Genotype(str, enum.Enum):
    """Inversion genotype classes.

    Declaration order is the tie-break priority for MAP calls.
    """

    NORMAL = "normal"
    HET = "het_inverted"
    HOM = "hom_inverted"


GENOTYPES: Tuple[Genotype, ...] = (Genotype.NORMAL, Genotype.HET, Genotype.HOM)


@dataclass(frozen=True)
class GenomicBin:
    """A half-open interval [start, end) on one contig (0-based)."""

    contig: str
    start: int
    end: int

    @property
    def width(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class Interval:
    """A candidate region to genotype.

    Coordinates are 0-based half-open, as in BED.
    """

    contig: str
    start: int
    end: int
    name: Optional[str] = None

    def label(self) -> str:
        return self.name or f"{self.contig}:{self.start}-{self.end}"


@dataclass(frozen=True)
class StrandCounts:
    forward: int
    reverse: int

    @property
    def total(self) -> int:
        return self.forward + self.reverse


@dataclass(frozen=True)
class BackgroundEstimate:
    """Background rate and strand state of a WW/CC composite.

    Attributes
    ----------
    background_rate:
        Fraction of non-directional reads, always folded to <= 0.5.
    base_state:
        'WW' or 'CC'.
    total_reads:
        Number of reads passing the filters over all counted bins.
    """

    background_rate: float
    base_state: str
    total_reads: int


@dataclass(frozen=True)
class GenotypePrior:
    """Prior weight per genotype class (normal, heterozygous, homozygous)."""

    normal: float
    het: float
    hom: float

    def as_dict(self) -> Dict[Genotype, float]:
        return {Genotype.NORMAL: self.normal, Genotype.HET: self.het, Genotype.HOM: self.hom}


@dataclass(frozen=True)
class GenotypeModel:
    """Parameters of the interval genotyper.

    het_inverted_fraction:
        Share of reads in a heterozygous interval that originate from the inverted
        haplotype. With background b the expected WW reverse fraction is
        ``f * (1 - b) + (1 - f) * b``.
    confidence:
        Calls with a MAP posterior below this are flagged ``low_confidence``.
    """

    prior: GenotypePrior = field(default_factory=lambda: GenotypePrior(0.333, 0.333, 0.334))
    het_inverted_fraction: float = 0.5
    confidence: float = 0.95


@dataclass(frozen=True)
class IntervalCall:
    """Per-interval genotype result."""

    interval: Interval
    ww_counts: StrandCounts
    wc_counts: Optional[StrandCounts]
    posterior: Dict[Genotype, float]
    genotype: Genotype
    probability: float
    low_confidence: bool
