import math
from pathlib import Path

import pytest

from invertyper.background import wwcc_background
from invertyper.errors import InputError
from invertyper.genotyper import (
    genotype_counts,
    genotype_intervals,
    map_genotype,
    ww_class_rates,
)
from invertyper.intervals import load_intervals
from invertyper.models import (
    BackgroundEstimate,
    Genotype,
    GenotypeModel,
    GenotypePrior,
    Interval,
    StrandCounts,
)
from invertyper.toy_data import TOY_BINSIZE, make_toy_data
from invertyper.validation import validate_prior


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


@pytest.fixture(scope="module")
def toy_background(toy):
    return wwcc_background(toy["ww_bam"], binsize=TOY_BINSIZE, n_autosomes=2, progress=False)


def test_ww_class_rates():
    ww = ww_class_rates("WW", 0.05)
    assert ww[Genotype.NORMAL] == pytest.approx(0.05)
    assert ww[Genotype.HOM] == pytest.approx(0.95)
    assert ww[Genotype.HET] == pytest.approx(0.5)

    cc = ww_class_rates("CC", 0.05, het_inverted_fraction=0.25)
    assert cc[Genotype.NORMAL] == pytest.approx(0.95)
    assert cc[Genotype.HOM] == pytest.approx(0.05)
    assert cc[Genotype.HET] == pytest.approx(0.25 * 0.05 + 0.75 * 0.95)


def test_ww_like_interval_is_normal():
    model = GenotypeModel(prior=GenotypePrior(0.9, 0.05, 0.05))
    post = genotype_counts(StrandCounts(95, 5), base_state="WW", ww_background=0.05, model=model)
    g, p = map_genotype(post)
    assert g is Genotype.NORMAL
    assert p > 0.9
    assert sum(post.values()) == pytest.approx(1.0)


def test_inverted_interval_is_hom():
    post = genotype_counts(StrandCounts(6, 94), base_state="WW", ww_background=0.05)
    assert map_genotype(post)[0] is Genotype.HOM


def test_cc_base_state_flips_expectations():
    post = genotype_counts(StrandCounts(6, 94), base_state="CC", ww_background=0.05)
    assert map_genotype(post)[0] is Genotype.NORMAL


def test_half_reverse_is_het_and_wc_composite_agrees():
    post = genotype_counts(
        StrandCounts(50, 50),
        StrandCounts(4, 96),
        base_state="WW",
        ww_background=0.05,
    )
    g, p = map_genotype(post)
    assert g is Genotype.HET
    assert p > 0.99


def test_wc_composite_weighs_against_het():
    ww_only = genotype_counts(StrandCounts(14, 6), base_state="WW", ww_background=0.05)
    with_wc = genotype_counts(
        StrandCounts(14, 6), StrandCounts(100, 100), base_state="WW", ww_background=0.05
    )
    assert with_wc[Genotype.HET] < ww_only[Genotype.HET]


def test_no_reads_returns_prior():
    prior = GenotypePrior(0.7, 0.2, 0.1)
    post = genotype_counts(
        StrandCounts(0, 0),
        StrandCounts(0, 0),
        base_state="WW",
        ww_background=0.05,
        model=GenotypeModel(prior=prior),
    )
    assert post[Genotype.NORMAL] == pytest.approx(0.7)
    assert post[Genotype.HET] == pytest.approx(0.2)
    assert post[Genotype.HOM] == pytest.approx(0.1)


def test_zero_background_does_not_produce_nan():
    post = genotype_counts(StrandCounts(90, 10), base_state="WW", ww_background=0.0)
    assert all(math.isfinite(p) for p in post.values())
    assert sum(post.values()) == pytest.approx(1.0)


def test_zero_prior_excludes_class():
    model = GenotypeModel(prior=GenotypePrior(0.5, 0.0, 0.5))
    post = genotype_counts(StrandCounts(50, 50), base_state="WW", ww_background=0.05, model=model)
    assert post[Genotype.HET] == 0.0


def test_map_tie_break_order():
    assert map_genotype(
        {Genotype.NORMAL: 1 / 3, Genotype.HET: 1 / 3, Genotype.HOM: 1 / 3}
    )[0] is Genotype.NORMAL
    assert map_genotype({Genotype.NORMAL: 0.0, Genotype.HET: 0.5, Genotype.HOM: 0.5})[0] is Genotype.HET


@pytest.mark.parametrize(
    "prior",
    [(0.5, 0.5, 0.5), (-0.1, 0.6, 0.5), (0.5, 0.5), (float("nan"), 0.5, 0.5)],
)
def test_malformed_prior(prior):
    with pytest.raises(InputError):
        validate_prior(prior)


def test_genotype_intervals_recovers_truth(toy, toy_background):
    intervals = load_intervals(toy["regions_bed"])
    calls = genotype_intervals(
        toy["ww_bam"],
        intervals,
        toy_background,
        wc_bam_path=toy["wc_bam"],
        n_autosomes=2,
        progress=False,
    )
    got = {c.interval.label(): c.genotype.value for c in calls}
    assert got == toy["truth"]
    assert [c.interval for c in calls] == intervals
    for c in calls:
        assert c.probability > 0.95
        assert not c.low_confidence


def test_genotype_intervals_without_wc(toy, toy_background):
    intervals = load_intervals(toy["regions_bed"])
    calls = genotype_intervals(
        toy["ww_bam"], intervals, toy_background, n_autosomes=2, progress=False
    )
    assert [c.genotype for c in calls] == [Genotype.HOM, Genotype.HET, Genotype.NORMAL]
    assert all(c.wc_counts is None for c in calls)


def test_genotype_intervals_is_idempotent(toy, toy_background):
    intervals = load_intervals(toy["regions_bed"])
    kwargs = dict(wc_bam_path=toy["wc_bam"], n_autosomes=2, progress=False)
    first = genotype_intervals(toy["ww_bam"], intervals, toy_background, **kwargs)
    second = genotype_intervals(toy["ww_bam"], intervals, toy_background, **kwargs)
    assert first == second


def test_ensembl_style_regions_are_remapped(toy, toy_background):
    calls = genotype_intervals(
        toy["ww_bam"],
        [Interval("1", 50_000, 70_000)],
        toy_background,
        n_autosomes=2,
        progress=False,
    )
    assert calls[0].interval.contig == "chr1"
    assert calls[0].genotype is Genotype.HOM


@pytest.mark.parametrize(
    "interval",
    [
        Interval("chr1", 190_000, 250_000),
        Interval("chrX", 10_000, 20_000),
        Interval("chr7", 0, 1000),
    ],
)
def test_out_of_range_interval_fails_batch(toy, toy_background, interval):
    intervals = [Interval("chr1", 50_000, 70_000), interval]
    with pytest.raises(InputError):
        genotype_intervals(
            toy["ww_bam"], intervals, toy_background, n_autosomes=2, progress=False
        )


def test_bad_model_parameters(toy):
    bg = BackgroundEstimate(0.05, "WW", 100)
    with pytest.raises(InputError):
        genotype_intervals(
            toy["ww_bam"],
            [Interval("chr1", 0, 1000)],
            bg,
            model=GenotypeModel(het_inverted_fraction=1.5),
            n_autosomes=2,
            progress=False,
        )
    with pytest.raises(InputError):
        genotype_intervals(
            toy["ww_bam"],
            [Interval("chr1", 0, 1000)],
            bg,
            model=GenotypeModel(prior=GenotypePrior(0.2, 0.2, 0.2)),
            n_autosomes=2,
            progress=False,
        )


def test_missing_wc_bam(toy, toy_background, tmp_path: Path):
    with pytest.raises(InputError):
        genotype_intervals(
            toy["ww_bam"],
            [Interval("chr1", 0, 1000)],
            toy_background,
            wc_bam_path=tmp_path / "missing.bam",
            n_autosomes=2,
            progress=False,
        )
