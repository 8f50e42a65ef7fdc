"""InvertypeR: Bayesian inversion genotyping from Strand-seq composite BAMs.

Public API is intentionally small; most users should use the CLI:

    invertyper genotype --ww-bam WW.bam --wc-bam WC.bam --regions inv.bed --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
