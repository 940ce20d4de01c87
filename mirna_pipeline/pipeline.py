"""
End-to-end miRNA count preparation.

Runs the stages in order, each taking the previous stage's bundle and
returning a new one, and writes the checkpoint files of every stage.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from .annotation import add_identical_sequence, merge_annotation, read_annotation
from .bundle import CountsBundle
from .config import PipelineConfig
from .exceptions import ConfigError
from .filtering import filter_low_expression, remove_zero_features, validate_filter_parameters
from .normalize import calc_norm_factors, recompute_library_sizes
from .quantify import build_count_matrix, discover_count_files
from .report import (
    build_run_summary, write_density_plot, write_filtered_counts,
    write_norm_factors, write_raw_counts, write_run_summary, write_sample_info,
)
from .utils import staged_outputs

logger = logging.getLogger(__name__)

@dataclass
class PipelineResult:
    """Bundles produced by a run and the files written."""

    raw: CountsBundle
    no_zeros: CountsBundle
    filtered: CountsBundle
    normalized: CountsBundle
    reference_sample: str
    outputs: List[Path] = field(default_factory=list)
    summary: Dict = field(default_factory=dict)

def prepare_counts(config: PipelineConfig) -> CountsBundle:
    """Discover, load, annotate and describe the libraries."""
    sample_files = discover_count_files(
        config.counts_dir,
        pattern=config.file_pattern,
        suffix=config.file_suffix,
        prefix=config.sample_prefix,
    )
    raw_counts = build_count_matrix(sample_files)

    annotation = add_identical_sequence(read_annotation(config.annotation_file))
    annotated = merge_annotation(annotation, raw_counts)

    return CountsBundle.from_annotated(annotated, raw_counts.columns)

def normalize_counts(bundle: CountsBundle, config: PipelineConfig) -> Tuple[CountsBundle, str]:
    """Recompute library sizes and add TMM factors; returns the bundle and reference library."""
    return calc_norm_factors(
        recompute_library_sizes(bundle),
        logratio_trim=config.logratio_trim,
        sum_trim=config.sum_trim,
        reference=config.reference_sample,
    )

def run_pipeline(config: PipelineConfig, write_outputs: bool = True) -> PipelineResult:
    """
    Run all stages.

    Args:
        config: Validated pipeline configuration
        write_outputs: Write the checkpoint tables, plot and run summary

    Returns:
        PipelineResult with the bundle of every stage
    """
    logger.info(f"Running {config.method} count preparation")
    outputs: List[Path] = []

    raw = prepare_counts(config)
    # fail before any output is written when the filter cannot be satisfied
    validate_filter_parameters(config.cpm_threshold, config.min_libraries, raw.n_samples)
    if config.reference_sample is not None and config.reference_sample not in raw.counts.columns:
        raise ConfigError(f"Reference sample {config.reference_sample!r} is not among the libraries")

    if write_outputs:
        with staged_outputs("raw counts") as staged:
            outputs.append(write_raw_counts(raw, config, staged))
            outputs.append(write_sample_info(raw, config, staged))
            outputs.append(write_density_plot(raw, config, staged))

    no_zeros = remove_zero_features(raw)
    filtered = filter_low_expression(
        no_zeros, cpm_threshold=config.cpm_threshold, min_libraries=config.min_libraries
    )

    if write_outputs:
        with staged_outputs("filtering") as staged:
            outputs.append(write_filtered_counts(filtered, config, staged))

    normalized, reference = normalize_counts(filtered, config)

    stage_counts = {
        "annotated": raw.n_features,
        "no_zeros": no_zeros.n_features,
        "filtered": filtered.n_features,
    }
    summary = build_run_summary(config, stage_counts, normalized, reference)

    if write_outputs:
        with staged_outputs("normalization") as staged:
            outputs.append(write_norm_factors(normalized, config, staged))
            outputs.append(write_run_summary(summary, config, staged))

    logger.info(
        f"Done: {filtered.n_features} of {raw.n_features} miRNAs retained "
        f"across {normalized.n_samples} libraries"
    )
    return PipelineResult(
        raw=raw,
        no_zeros=no_zeros,
        filtered=filtered,
        normalized=normalized,
        reference_sample=reference,
        outputs=outputs,
        summary=summary,
    )
