from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from . import __version__
from .background import wwcc_background
from .counting import DEFAULT_BINSIZE, DEFAULT_MIN_MAPQ, DEFAULT_N_AUTOSOMES
from .errors import DataError
from .genotyper import genotype_intervals
from .intervals import load_intervals
from .models import GenotypeModel, PairingMode
from .output import summarize_calls, write_calls_tsv
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .validation import check_bam_index, validate_prior


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _probability(s: str) -> float:
    v = float(s)
    if not 0.0 <= v <= 1.0:
        raise argparse.ArgumentTypeError(f"Expected a value within [0, 1], got {s}")
    return v


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    if isinstance(err, DataError):
        msg += "\nCheck how the composite file was built (strand states of the selected cells)."

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_counting_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--binsize",
        type=int,
        default=DEFAULT_BINSIZE,
        help="Bin size for background estimation (default: 1 Mb).",
    )
    p.add_argument(
        "--unpaired",
        action="store_true",
        help="Reads are single-end (default: paired-end, first mates counted).",
    )
    p.add_argument(
        "--min-mapq",
        type=int,
        default=DEFAULT_MIN_MAPQ,
        help="Reads need MAPQ strictly greater than this (default: 10).",
    )
    p.add_argument(
        "--n-autosomes",
        type=int,
        default=DEFAULT_N_AUTOSOMES,
        help="Number of leading header contigs to count (default: 22).",
    )
    p.add_argument("--processes", type=int, default=1, help="Worker processes for bin counting.")
    p.add_argument("--no-progress", action="store_true", help="Disable progress bars.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="invertyper",
        description=(
            "InvertypeR: Bayesian genotyping of inversions from Strand-seq WW/CC and WC/CW "
            "composite BAMs."
        ),
    )
    p.add_argument("--version", action="version", version=f"invertyper {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate small synthetic WW and WC composite BAMs plus a regions BED.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument(
        "--background", type=_probability, default=0.05, help="Simulated background rate."
    )
    t.add_argument("--unpaired", action="store_true", help="Simulate single-end reads.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # background
    # -----------------
    b = sub.add_parser(
        "background",
        help="Estimate the background rate and base strand state of a WW/CC composite BAM.",
    )
    b.add_argument("--bam", required=True, type=_path_exists, help="WW/CC composite BAM (indexed).")
    b.add_argument("--outdir", default=None, help="Optional directory for background.json.")
    _add_counting_args(b)
    b.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # genotype
    # -----------------
    g = sub.add_parser(
        "genotype",
        help="Genotype candidate inversion regions against the composite BAMs.",
    )
    g.add_argument(
        "--ww-bam", required=True, type=_path_exists, help="WW/CC composite BAM (indexed)."
    )
    g.add_argument(
        "--wc-bam", default=None, type=_path_exists, help="Phased WC/CW composite BAM (indexed)."
    )
    g.add_argument(
        "--regions", required=True, type=_path_exists, help="BED file of candidate regions."
    )
    g.add_argument("--outdir", required=True, help="Output directory.")
    g.add_argument(
        "--prior",
        type=float,
        nargs=3,
        metavar=("NORMAL", "HET", "HOM"),
        default=[0.333, 0.333, 0.334],
        help="Prior weights for normal, heterozygous and homozygous inversions (sum to 1).",
    )
    g.add_argument(
        "--het-fraction",
        type=_probability,
        default=0.5,
        help="Share of reads from the inverted haplotype in a heterozygous region.",
    )
    g.add_argument(
        "--wc-background",
        type=float,
        default=None,
        help="Background rate of the WC composite (default: the WW/CC estimate).",
    )
    g.add_argument(
        "--confidence",
        type=_probability,
        default=0.95,
        help="Flag calls whose posterior is below this value.",
    )
    _add_counting_args(g)
    g.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    g.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    g.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "InvertypeR quickstart (copy/paste):",
        "",
        "1) Background of a WW/CC composite:",
        "   invertyper background --bam WW_composite.bam",
        "",
        "2) Genotype candidate inversions:",
        "   invertyper genotype \\",
        "     --ww-bam WW_composite.bam \\",
        "     --wc-bam WC_composite.bam \\",
        "     --regions inversions.bed \\",
        "     --outdir results/",
        "   Outputs: results/calls.tsv, results/summary.json",
        "",
        "3) Try it on synthetic data:",
        "   invertyper make-toy-data --outdir toy/",
        "   invertyper genotype --ww-bam toy/ww_composite.bam --wc-bam toy/wc_composite.bam \\",
        "     --regions toy/regions.bed --binsize 10000 --n-autosomes 2 --outdir toy_out/",
        "",
        "Tip: use --dry-run to validate inputs before counting.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(
        outdir=outdir,
        background=float(args.background),
        paired=not bool(args.unpaired),
    )
    print(json.dumps(summary, indent=2))
    return 0


def cmd_background(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else None
    log_path = _log_path(outdir, "background.log") if outdir is not None else None
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("invertyper")
    logger.info("invertyper %s", __version__)

    try:
        est = wwcc_background(
            args.bam,
            binsize=int(args.binsize),
            pairing=PairingMode.UNPAIRED if args.unpaired else PairingMode.PAIRED,
            min_mapq=int(args.min_mapq),
            n_autosomes=int(args.n_autosomes),
            processes=int(args.processes),
            progress=not bool(args.no_progress),
        )
        result = asdict(est)
        if outdir is not None:
            ensure_outdir(outdir)
            write_json(outdir / "background.json", result)
        print(json.dumps(result, indent=2, sort_keys=True))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_genotype(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "genotype.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("invertyper")
    logger.info("invertyper %s", __version__)

    try:
        check_bam_index(args.ww_bam)
        if args.wc_bam is not None:
            check_bam_index(args.wc_bam)
        model = GenotypeModel(
            prior=validate_prior(args.prior),
            het_inverted_fraction=float(args.het_fraction),
            confidence=float(args.confidence),
        )
        intervals = load_intervals(args.regions)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Regions: {len(intervals)}")
            print(f"WC composite: {'yes' if args.wc_bam else 'no'}")
            print("Planned outputs:")
            print(f"  calls.tsv -> {outdir / 'calls.tsv'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "calls.tsv"))
            return 0

        pairing = PairingMode.UNPAIRED if args.unpaired else PairingMode.PAIRED
        progress = not bool(args.no_progress)

        background = wwcc_background(
            args.ww_bam,
            binsize=int(args.binsize),
            pairing=pairing,
            min_mapq=int(args.min_mapq),
            n_autosomes=int(args.n_autosomes),
            processes=int(args.processes),
            progress=progress,
        )

        calls = genotype_intervals(
            args.ww_bam,
            intervals,
            background,
            wc_bam_path=args.wc_bam,
            wc_background=args.wc_background,
            model=model,
            pairing=pairing,
            min_mapq=int(args.min_mapq),
            n_autosomes=int(args.n_autosomes),
            progress=progress,
        )

        calls_path = write_calls_tsv(calls, outdir / "calls.tsv")
        summary = summarize_calls(
            calls,
            background=background,
            wc_background=args.wc_background,
            params={
                "ww_bam": args.ww_bam,
                "wc_bam": args.wc_bam,
                "regions": args.regions,
                "prior": list(args.prior),
                "het_inverted_fraction": model.het_inverted_fraction,
                "confidence": model.confidence,
                "binsize": int(args.binsize),
                "pairing": pairing.value,
                "min_mapq": int(args.min_mapq),
                "n_autosomes": int(args.n_autosomes),
                "version": __version__,
            },
        )
        write_json(outdir / "summary.json", summary)

        logger.info("Calls written: %s", calls_path)
        print(str(calls_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "background":
        return cmd_background(args)
    if args.cmd == "genotype":
        return cmd_genotype(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
