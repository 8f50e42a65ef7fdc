import numpy as np
import pytest

from invertyper.background import (
    classify_base_state,
    density_mode,
    estimate_background,
    reverse_fractions,
    wwcc_background,
)
from invertyper.counting import BinCounts, tile_genome
from invertyper.errors import DataError
from invertyper.toy_data import TOY_BINSIZE, make_toy_data, simulate_composite


def synthetic_counts(rate: float, *, n_bins: int = 300, depth: int = 1000, seed: int = 1) -> BinCounts:
    rng = np.random.default_rng(seed)
    reverse = rng.binomial(depth, rate, size=n_bins)
    forward = depth - reverse
    bins = tile_genome([("chr1", n_bins * 100)], 100)
    return BinCounts(bins=bins, forward=forward, reverse=reverse)


def test_reverse_fractions_exact_and_skip_empty_bins():
    fwd = np.array([3, 0, 0, 10])
    rev = np.array([1, 0, 5, 0])
    frac = reverse_fractions(fwd, rev)
    assert frac.tolist() == [0.25, 1.0, 0.0]


def test_total_reads_include_all_bins():
    bins = tile_genome([("chr1", 400)], 100)
    counts = BinCounts(
        bins=bins,
        forward=np.array([95, 0, 96, 94]),
        reverse=np.array([5, 0, 4, 6]),
    )
    est = estimate_background(counts)
    assert est.total_reads == 300
    assert est.base_state == "WW"


def test_ww_background():
    est = estimate_background(synthetic_counts(0.05))
    assert est.base_state == "WW"
    assert est.background_rate == pytest.approx(0.05, abs=0.01)
    assert est.total_reads == 300 * 1000


def test_cc_background_is_folded():
    est = estimate_background(synthetic_counts(0.95))
    assert est.base_state == "CC"
    assert est.background_rate == pytest.approx(0.05, abs=0.01)


def test_mode_ignores_inverted_bins():
    counts = synthetic_counts(0.05)
    counts.reverse[:20] = 950
    counts.forward[:20] = 50
    est = estimate_background(counts)
    assert est.base_state == "WW"
    assert est.background_rate == pytest.approx(0.05, abs=0.01)


@pytest.mark.parametrize("rate", [0.45, 0.5, 0.55])
def test_wc_composite_rejected(rate):
    with pytest.raises(DataError, match="WC/CW"):
        estimate_background(synthetic_counts(rate))


@pytest.mark.parametrize("rate", [0.2, 0.8])
def test_high_background_rejected(rate):
    with pytest.raises(DataError, match=">10% background") as exc:
        estimate_background(synthetic_counts(rate))
    assert exc.value.mode == pytest.approx(rate, abs=0.02)


def test_classify_boundaries():
    assert classify_base_state(0.0999) == ("WW", pytest.approx(0.0999))
    assert classify_base_state(0.9001)[0] == "CC"
    for m in (0.1, 0.3, 0.7, 0.9):
        with pytest.raises(DataError, match=">10% background"):
            classify_base_state(m)
    with pytest.raises(DataError, match="WC/CW"):
        classify_base_state(0.31)


def test_density_mode_degenerate_samples():
    assert density_mode(np.array([0.04, 0.04, 0.04])) == pytest.approx(0.04)
    with pytest.raises(DataError):
        density_mode(np.array([]))


def test_density_mode_is_deterministic():
    x = reverse_fractions(synthetic_counts(0.05).forward, synthetic_counts(0.05).reverse)
    assert density_mode(x) == density_mode(x)


def test_wwcc_background_on_bam(tmp_path):
    toy = make_toy_data(outdir=tmp_path / "toy")
    est = wwcc_background(toy["ww_bam"], binsize=TOY_BINSIZE, n_autosomes=2, progress=False)
    assert est.base_state == "WW"
    assert est.background_rate == pytest.approx(0.05, abs=0.02)
    assert est.total_reads > 0

    with pytest.raises(DataError, match="WC/CW"):
        wwcc_background(toy["wc_bam"], binsize=TOY_BINSIZE, n_autosomes=2, progress=False)


def test_cc_composite_bam(tmp_path):
    bam = simulate_composite(tmp_path / "cc.bam", reverse_rate=0.95)
    est = wwcc_background(bam, binsize=TOY_BINSIZE, n_autosomes=2, progress=False)
    assert est.base_state == "CC"
    assert est.background_rate == pytest.approx(0.05, abs=0.02)
