"""
Module: cli.py
Project: GBIF occurrence cubes (occcube)

Command-line entry point. Steps:
  download    request and fetch a GBIF download for the configured country
  load        filter a downloaded ZIP and load it into the occurrence store
  assign      assign every stored record to a grid cell (chunked, seeded)
  cube        aggregate the store to the species cube CSV
  compendium  build the taxonomic compendium CSV
  run         load, assign, cube and compendium in one go

Usage:
    occcube download --country BE
    occcube run --zip data/raw/GBIF_BE_20250101_0001.zip --seed 1000
    occcube assign --resume
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from occcube.compendium import GbifTaxonomyLookup, build_compendium
from occcube.config import CubeConfig, GbifCredentials
from occcube.cube import build_species_cube
from occcube.download import GbifDownloadClient
from occcube.errors import DownloadError, ProjectionError
from occcube.export import write_compendium_csv, write_cube_csv
from occcube.filters import FilterRules
from occcube.helpers.cube_summary import write_summaries
from occcube.load import load_occurrences, write_filter_report
from occcube.logs import rel, setup_logging
from occcube.pipeline import assign_cells
from occcube.store import OccurrenceStore

logger = logging.getLogger("occcube.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="occcube", description="GBIF species occurrence cubes")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--country", type=str, help="ISO2 country code")
    parser.add_argument("--seed", type=int, help="Random seed of the uncertainty sampling")
    parser.add_argument("--chunk-size", type=int, help="Records per chunk (part of reproducibility)")
    parser.add_argument("--cell-size", type=int, help="Grid cell size in meters")
    parser.add_argument("--default-uncertainty", type=float, help="Radius (m) used when uncertainty is missing")
    parser.add_argument("--source-crs", type=str, help="CRS of the GBIF coordinates")
    parser.add_argument("--target-crs", type=str, help="Projected CRS of the grid")
    parser.add_argument("--data-dir", type=Path, help="Data root")
    parser.add_argument("--results-dir", type=Path, help="Results root")
    parser.add_argument("--log-dir", type=Path, help="Log root")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("download", help="Request and fetch a GBIF occurrence download")
    p.add_argument("--poll-seconds", type=float, default=20)
    p.add_argument("--year-min", type=int)
    p.add_argument("--year-max", type=int)

    for name, help_text in [
        ("load", "Filter a GBIF download and load it into the store"),
        ("run", "Load, assign, aggregate and build the compendium"),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--zip", type=Path, required=True, help="GBIF download ZIP")
        p.add_argument("--basis", type=str, action="append", help="Allowed basisOfRecord (repeatable)")
        p.add_argument("--year-min", type=int)
        p.add_argument("--year-max", type=int)

    p = sub.add_parser("assign", help="Assign grid cells to all stored records")
    p.add_argument("--resume", action="store_true", help="Continue an interrupted assignment")

    sub.add_parser("cube", help="Aggregate the store to the species cube")
    sub.add_parser("compendium", help="Build the taxonomic compendium")
    return parser


def config_from_args(args) -> CubeConfig:
    config = CubeConfig.from_yaml(args.config) if args.config else CubeConfig.from_env()
    return config.replace(
        country=args.country,
        seed=args.seed,
        chunk_size=args.chunk_size,
        cell_size=args.cell_size,
        default_uncertainty=args.default_uncertainty,
        source_crs=args.source_crs,
        target_crs=args.target_crs,
        data_dir=args.data_dir,
        results_dir=args.results_dir,
        log_dir=args.log_dir,
    )


def rules_from_args(args) -> FilterRules:
    return FilterRules(allowed_basis=args.basis, year_min=args.year_min, year_max=args.year_max)


# ----------------------------------------------------------------------
# Steps
# ----------------------------------------------------------------------

def run_download(config: CubeConfig, args) -> Path:
    credentials = GbifCredentials.from_env()
    if credentials is None:
        raise DownloadError(
            "GBIF credentials not set. Please define GBIF_USER, GBIF_PASSWORD, GBIF_EMAIL "
            "as environment variables."
        )
    client = GbifDownloadClient(credentials)
    return client.download_country(
        config.country,
        config.raw_dir,
        poll_seconds=args.poll_seconds,
        year_min=args.year_min,
        year_max=args.year_max,
    )


def run_load(config: CubeConfig, store: OccurrenceStore, zip_path: Path, rules: FilterRules):
    if store.count():
        raise ValueError(
            f"Occurrence store {rel(config.db_path)} already holds {store.count()} records; "
            "remove it to load a new download"
        )
    stats = load_occurrences(zip_path, store, rules, chunk_size=config.chunk_size)
    write_filter_report(config.report_file, stats, rules, zip_path)
    return stats


def run_cube(config: CubeConfig, store: OccurrenceStore):
    unassigned = store.count_unassigned()
    if unassigned:
        raise ValueError(f"{unassigned} records have no grid cell yet; run 'occcube assign' first")
    cube, summary = build_species_cube(store, chunk_size=config.chunk_size)
    write_cube_csv(cube, config.cube_csv)
    write_summaries(cube, config.results_dir, prefix=config.country.lower())
    logger.info(f"Cube summary: {summary.to_dict()}")
    return cube, summary


def run_compendium(config: CubeConfig, store: OccurrenceStore):
    compendium, summary = build_compendium(store, GbifTaxonomyLookup(), chunk_size=config.chunk_size)
    write_compendium_csv(compendium, config.compendium_csv)
    logger.info(f"Compendium summary: {summary.to_dict()}")
    return compendium, summary


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    config.ensure_directories()
    setup_logging(args.command, config.log_dir, level=logging.DEBUG if args.verbose else logging.INFO)

    logger.info(f"=== occcube {args.command} started ===")
    logger.info(f"Country:          {config.country}")
    logger.info(f"Occurrence store: {rel(config.db_path)}")
    logger.info(f"Configuration:    {config.fingerprint()}")

    try:
        if args.command == "download":
            run_download(config, args)
        else:
            with OccurrenceStore(config.db_path) as store:
                if args.command in ("load", "run"):
                    run_load(config, store, args.zip, rules_from_args(args))
                if args.command in ("assign", "run"):
                    summary = assign_cells(store, config, resume=getattr(args, "resume", False))
                    logger.info(f"Assignment summary: {summary.to_dict()}")
                if args.command in ("cube", "run"):
                    run_cube(config, store)
                if args.command in ("compendium", "run"):
                    run_compendium(config, store)
    except (DownloadError, ProjectionError, ValueError, FileNotFoundError) as e:
        logger.error(f"=== occcube {args.command} failed: {e} ===")
        return 1

    logger.info(f"=== occcube {args.command} completed successfully ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
