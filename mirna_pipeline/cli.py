#!/usr/bin/env python3
"""
miRNA Pipeline CLI

Command-line interface for preparing miRDeep2 small-RNA counts for
differential expression: ingestion, annotation, sample metadata, expression
filtering and TMM normalization.
"""

import typer
import sys
import logging
from pathlib import Path
from typing import Optional, List

import pandas as pd
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import load_config
from .exceptions import PipelineError
from .metadata import parse_sample_id
from .normalize import tmm_norm_factors
from .pipeline import run_pipeline
from .quantify import discover_count_files
from .utils import setup_logging, validate_file_exists, format_number

app = typer.Typer(
    name="mirna_pipeline",
    help="miRNA Pipeline - prepare miRDeep2 counts of a time course experiment for DE analysis",
    add_completion=False,
)

console = Console()

_log_level = logging.INFO

# Global options
def version_callback(value: bool):
    if value:
        console.print(f"miRNA Pipeline v{__version__}")
        raise typer.Exit()

def verbose_callback(value: bool):
    global _log_level
    _log_level = logging.DEBUG if value else logging.INFO
    setup_logging(level=_log_level)

@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False, "--verbose",
        callback=verbose_callback,
        help="Enable verbose logging"
    ),
):
    """miRNA Pipeline CLI"""
    pass

def _fail(message: str, error: Exception):
    console.print(f"[bold red]{message}: {escape(str(error))}[/bold red]")
    sys.exit(1)

@app.command()
def run(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    counts_dir: Optional[Path] = typer.Option(None, help="Directory with miRDeep2 quantifier files"),
    annotation_file: Optional[Path] = typer.Option(None, help="miRNA annotation table"),
    tables_dir: Optional[Path] = typer.Option(None, help="Output directory for tables"),
    images_dir: Optional[Path] = typer.Option(None, help="Output directory for figures"),
    file_pattern: Optional[str] = typer.Option(None, help="Regex matched at the start of quantifier file names"),
    file_suffix: Optional[str] = typer.Option(None, help="Suffix removed from file names to build sample ids"),
    sample_prefix: Optional[str] = typer.Option(None, help="Prefix for sample ids starting with a digit"),
    method: Optional[str] = typer.Option(None, help="Label prefixed to every output file"),
    cpm_threshold: Optional[float] = typer.Option(None, help="Counts per million a miRNA must exceed"),
    min_libraries: Optional[int] = typer.Option(None, help="Libraries in which the CPM threshold must be exceeded"),
    logratio_trim: Optional[float] = typer.Option(None, help="TMM trim fraction for log-ratios"),
    sum_trim: Optional[float] = typer.Option(None, help="TMM trim fraction for mean intensities"),
    reference_sample: Optional[str] = typer.Option(None, help="TMM reference library"),
    timezone: Optional[str] = typer.Option(None, help="Time zone of the run summary timestamp"),
    plot_format: Optional[str] = typer.Option(None, help="Image format of the density plot (pdf, png, svg)"),
    log_file: Optional[Path] = typer.Option(None, help="Write a copy of the log to this file"),
):
    """Run the complete count preparation pipeline."""
    try:
        config = load_config(
            config_file,
            counts_dir=counts_dir,
            annotation_file=annotation_file,
            tables_dir=tables_dir,
            images_dir=images_dir,
            file_pattern=file_pattern,
            file_suffix=file_suffix,
            sample_prefix=sample_prefix,
            method=method,
            cpm_threshold=cpm_threshold,
            min_libraries=min_libraries,
            logratio_trim=logratio_trim,
            sum_trim=sum_trim,
            reference_sample=reference_sample,
            timezone=timezone,
            plot_format=plot_format,
            log_file=log_file,
        )
    except PipelineError as e:
        _fail("Invalid configuration", e)

    if config.log_file:
        setup_logging(level=_log_level, log_file=config.log_file)

    console.print(f"[bold blue]Running {config.method} count preparation[/bold blue]")

    try:
        result = run_pipeline(config)
    except PipelineError as e:
        _fail("Pipeline failed", e)
    except Exception as e:
        logging.getLogger(__name__).exception("Unexpected error")
        _fail("Unexpected error", e)

    table = Table(title="Libraries")
    table.add_column("Sample")
    table.add_column("Group")
    table.add_column("Time point")
    table.add_column("Library size", justify="right")
    table.add_column("Norm factor", justify="right")
    for sample, row in result.normalized.samples.iterrows():
        table.add_row(
            sample, str(row["group"]), str(row["time_point"]),
            format_number(row["lib_size"]), f"{row['norm_factors']:.4f}",
        )
    console.print(table)

    console.print(
        f"[bold green]Pipeline completed: {result.filtered.n_features} of "
        f"{result.raw.n_features} miRNAs retained[/bold green]"
    )
    for output in result.outputs:
        console.print(f"Results saved to: {output}")

@app.command()
def discover(
    counts_dir: Path = typer.Argument(..., help="Directory with miRDeep2 quantifier files"),
    file_pattern: str = typer.Option("^6", help="Regex matched at the start of file names"),
    file_suffix: str = typer.Option("_expressed.csv", help="Suffix removed from file names"),
    sample_prefix: str = typer.Option("A", help="Prefix for sample ids starting with a digit"),
):
    """List the quantifier files and the sample ids derived from them."""
    try:
        sample_files = discover_count_files(counts_dir, file_pattern, file_suffix, sample_prefix)
    except PipelineError as e:
        _fail("Discovery failed", e)

    table = Table(title=f"{len(sample_files)} quantifier files")
    table.add_column("Sample")
    table.add_column("File")
    for sample_file in sample_files:
        table.add_row(sample_file.sample_id, sample_file.path.name)
    console.print(table)

@app.command()
def samples(
    sample_ids: List[str] = typer.Argument(..., help="Sample identifiers such as A6522_pre1"),
):
    """Show the animal, time point and group parsed from sample identifiers."""
    table = Table(title="Sample metadata")
    table.add_column("Sample")
    table.add_column("Animal")
    table.add_column("Time point")
    table.add_column("Group")
    try:
        for sample_id in sample_ids:
            info = parse_sample_id(sample_id)
            table.add_row(sample_id, info.animal, info.time_point, info.group)
    except PipelineError as e:
        _fail("Invalid sample identifier", e)
    console.print(table)

@app.command()
def normalize(
    counts_file: Path = typer.Argument(..., help="CSV count matrix, first column feature ids"),
    output_file: Optional[Path] = typer.Option(None, help="Write the factors to this CSV file"),
    logratio_trim: float = typer.Option(0.3, help="TMM trim fraction for log-ratios"),
    sum_trim: float = typer.Option(0.05, help="TMM trim fraction for mean intensities"),
    reference_sample: Optional[str] = typer.Option(None, help="TMM reference library"),
):
    """Compute TMM normalization factors for an existing count matrix."""
    try:
        counts = pd.read_csv(validate_file_exists(counts_file), index_col=0)
        lib_size = counts.sum(axis=0)
        factors, reference = tmm_norm_factors(
            counts, lib_size,
            logratio_trim=logratio_trim, sum_trim=sum_trim, reference=reference_sample,
        )
    except (PipelineError, FileNotFoundError, ValueError) as e:
        _fail("Normalization failed", e)

    result = pd.DataFrame({"lib_size": lib_size, "norm_factors": factors})
    result.index.name = "sample"
    console.print(f"Reference library: {reference}")
    console.print(result.to_string())
    if output_file:
        result.to_csv(output_file)
        console.print(f"Factors saved to: {output_file}")

@app.command()
def show_config(
    config_file: Optional[Path] = typer.Argument(None, help="YAML configuration file"),
):
    """Print the effective configuration as YAML."""
    try:
        config = load_config(config_file)
    except PipelineError as e:
        _fail("Invalid configuration", e)
    console.print(escape(yaml.safe_dump(config.to_dict(), sort_keys=False)))

if __name__ == "__main__":
    app()
