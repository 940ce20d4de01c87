"""
Removal of unexpressed and lowly expressed miRNAs.
"""

import logging
from typing import Optional

import pandas as pd

from .bundle import CountsBundle
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

def cpm(counts: pd.DataFrame, lib_size: pd.Series, norm_factors: Optional[pd.Series] = None) -> pd.DataFrame:
    """
    Counts per million.

    Args:
        counts: Features x samples count matrix
        lib_size: Library size per sample, indexed like the matrix columns
        norm_factors: Optional scaling factors applied to the library sizes

    Returns:
        CPM matrix with the same shape as ``counts``
    """
    effective = lib_size.astype(float)
    if norm_factors is not None:
        effective = effective * norm_factors
    return counts.div(effective.reindex(counts.columns), axis=1) * 1e6

def remove_zero_features(bundle: CountsBundle) -> CountsBundle:
    """Drop miRNAs with zero counts in every sample."""
    keep = bundle.counts.sum(axis=1) > 0
    filtered = bundle.subset_features(keep)
    logger.info(
        f"Zero-count filter: kept {filtered.n_features} of {bundle.n_features} miRNAs"
    )
    return filtered

def validate_filter_parameters(cpm_threshold: float, min_libraries: int, n_samples: int) -> None:
    if cpm_threshold < 0:
        raise ConfigError(f"CPM threshold must be >= 0, got {cpm_threshold}")
    if min_libraries < 1:
        raise ConfigError(f"Minimum number of libraries must be >= 1, got {min_libraries}")
    if min_libraries > n_samples:
        raise ConfigError(
            f"Minimum number of libraries ({min_libraries}) exceeds the number of samples ({n_samples})"
        )

def filter_low_expression(
    bundle: CountsBundle,
    cpm_threshold: float = 50.0,
    min_libraries: int = 10,
) -> CountsBundle:
    """
    Keep miRNAs with more than ``cpm_threshold`` CPM in at least ``min_libraries`` libraries.

    CPM uses the library sizes stored in the bundle, i.e. the sizes before
    any filtering.
    """
    validate_filter_parameters(cpm_threshold, min_libraries, bundle.n_samples)

    expressed = cpm(bundle.counts, bundle.samples["lib_size"]) > cpm_threshold
    keep = expressed.sum(axis=1) >= min_libraries
    filtered = bundle.subset_features(keep)
    logger.info(
        f"Expression filter (CPM > {cpm_threshold} in >= {min_libraries} libraries): "
        f"kept {filtered.n_features} of {bundle.n_features} miRNAs"
    )
    return filtered
