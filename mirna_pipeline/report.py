"""
Reporting module.

Writes the checkpoint tables, the raw density plot and the run summary.
Each writer takes a :class:`~mirna_pipeline.utils.StagedOutput` so a stage's
files appear together or not at all.
"""

import logging
import platform
from datetime import datetime
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Dict, Any
from zoneinfo import ZoneInfo

from . import __version__
from .bundle import CountsBundle
from .config import PipelineConfig
from .utils import StagedOutput, save_metrics_json
from .viz import density_data, plot_density

logger = logging.getLogger(__name__)

REPORTED_PACKAGES = ["numpy", "pandas", "scipy", "matplotlib", "seaborn", "typer", "rich", "PyYAML"]

def write_raw_counts(bundle: CountsBundle, config: PipelineConfig, staged: StagedOutput) -> Path:
    """Annotated raw counts, one row per miRNA, gene_id first."""
    final_path = config.output_path(config.tables_dir, "Raw-counts.csv")
    table = bundle.annotated_counts().rename_axis("gene_id").reset_index()
    table.to_csv(staged.path(final_path), index=False)
    return final_path

def write_sample_info(bundle: CountsBundle, config: PipelineConfig, staged: StagedOutput) -> Path:
    final_path = config.output_path(config.tables_dir, "samples-info.csv")
    bundle.samples.rename_axis("sample").reset_index().to_csv(staged.path(final_path), index=False)
    return final_path

def write_filtered_counts(bundle: CountsBundle, config: PipelineConfig, staged: StagedOutput) -> Path:
    final_path = config.output_path(config.tables_dir, "Filt_counts.csv")
    bundle.counts.rename_axis("miRBaseID").reset_index().to_csv(staged.path(final_path), index=False)
    return final_path

def write_norm_factors(bundle: CountsBundle, config: PipelineConfig, staged: StagedOutput) -> Path:
    final_path = config.output_path(config.tables_dir, "Norm-factors.csv")
    bundle.samples.rename_axis("sample").reset_index().to_csv(staged.path(final_path), index=False)
    return final_path

def write_density_plot(bundle: CountsBundle, config: PipelineConfig, staged: StagedOutput) -> Path:
    """Density of log10(count + 1) per library for the unfiltered counts."""
    final_path = config.output_path(config.images_dir, f"Raw-density.{config.plot_format}")
    plot_density(density_data(bundle), staged.path(final_path), title=config.method, fmt=config.plot_format)
    return final_path

def package_versions() -> Dict[str, str]:
    """Installed versions of the libraries the pipeline depends on."""
    versions = {"python": platform.python_version(), "mirna_pipeline": __version__}
    for package in REPORTED_PACKAGES:
        try:
            versions[package] = importlib_metadata.version(package)
        except importlib_metadata.PackageNotFoundError:
            versions[package] = "not installed"
    return versions

def build_run_summary(
    config: PipelineConfig,
    stage_counts: Dict[str, int],
    normalized: CountsBundle,
    reference_sample: str,
) -> Dict[str, Any]:
    """Summary of a finished run: feature counts per stage, factors, parameters and versions."""
    samples = normalized.samples
    return {
        "method": config.method,
        "finished": datetime.now(ZoneInfo(config.timezone)).isoformat(timespec="seconds"),
        "n_samples": int(normalized.n_samples),
        "features_per_stage": {k: int(v) for k, v in stage_counts.items()},
        "reference_sample": reference_sample,
        "library_sizes": {s: int(v) for s, v in samples["lib_size"].items()},
        "norm_factors": {s: float(v) for s, v in samples["norm_factors"].items()},
        "parameters": config.to_dict(),
        "versions": package_versions(),
    }

def write_run_summary(summary: Dict[str, Any], config: PipelineConfig, staged: StagedOutput) -> Path:
    final_path = config.output_path(config.tables_dir, "run-summary.json")
    save_metrics_json(summary, staged.path(final_path))
    return final_path
