"""
Library size normalization with the trimmed mean of M-values (TMM).

Follows the edgeR procedure (Robinson & Oshlack, Genome Biology 2010): each
library is compared with a reference library, the most extreme log-ratios
(M) and mean log-intensities (A) are trimmed, and the precision-weighted mean
of the remaining M values gives the log2 scaling factor. Factors only scale
the library sizes; the counts themselves are never changed.
"""

import logging
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import rankdata

from .bundle import CountsBundle
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]

def recompute_library_sizes(bundle: CountsBundle) -> CountsBundle:
    """Set each library size to the column sum of the (filtered) counts."""
    lib_size = bundle.counts.sum(axis=0).astype('int64')
    logger.info(
        f"Library sizes recomputed: {int(lib_size.min())} - {int(lib_size.max())} reads"
    )
    return bundle.with_samples(lib_size=lib_size)

def _check_trim(name: str, value: float) -> None:
    if not 0 <= value < 0.5:
        raise ConfigError(f"{name} must be in [0, 0.5), got {value}")

def tmm_factor(
    obs: ArrayLike,
    ref: ArrayLike,
    lib_obs: Optional[float] = None,
    lib_ref: Optional[float] = None,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    weighting: bool = True,
    a_cutoff: float = -1e10,
) -> float:
    """
    TMM scaling factor of one library relative to a reference library.

    Args:
        obs: Counts of the library being scaled
        ref: Counts of the reference library, same features as ``obs``
        lib_obs: Library size of ``obs`` (default: its sum)
        lib_ref: Library size of ``ref`` (default: its sum)
        logratio_trim: Fraction trimmed from each end of the M values
        sum_trim: Fraction trimmed from each end of the A values
        weighting: Weight M values by their inverse asymptotic variance
        a_cutoff: Features with A at or below this value are ignored

    Returns:
        Multiplicative scaling factor (1.0 for identical libraries)
    """
    _check_trim("logratio_trim", logratio_trim)
    _check_trim("sum_trim", sum_trim)

    obs = np.asarray(obs, dtype=float)
    ref = np.asarray(ref, dtype=float)
    if obs.shape != ref.shape:
        raise ValueError(f"Count vectors differ in length: {obs.shape} vs {ref.shape}")

    n_obs = float(obs.sum() if lib_obs is None else lib_obs)
    n_ref = float(ref.sum() if lib_ref is None else lib_ref)

    with np.errstate(divide='ignore', invalid='ignore'):
        log_obs = np.log2(obs / n_obs)
        log_ref = np.log2(ref / n_ref)
        m_values = log_obs - log_ref
        a_values = (log_obs + log_ref) / 2
        variance = (n_obs - obs) / n_obs / obs + (n_ref - ref) / n_ref / ref

    # only features with non-zero counts in both libraries
    finite = np.isfinite(m_values) & np.isfinite(a_values) & (a_values > a_cutoff)
    m_values = m_values[finite]
    a_values = a_values[finite]
    variance = variance[finite]

    if m_values.size == 0 or np.max(np.abs(m_values)) < 1e-6:
        return 1.0

    n = m_values.size
    lo_m = np.floor(n * logratio_trim) + 1
    hi_m = n + 1 - lo_m
    lo_a = np.floor(n * sum_trim) + 1
    hi_a = n + 1 - lo_a

    rank_m = rankdata(m_values)
    rank_a = rankdata(a_values)
    keep = (rank_m >= lo_m) & (rank_m <= hi_m) & (rank_a >= lo_a) & (rank_a <= hi_a)

    with np.errstate(divide='ignore', invalid='ignore'):
        if weighting:
            log_factor = np.sum(m_values[keep] / variance[keep]) / np.sum(1 / variance[keep])
        else:
            log_factor = np.mean(m_values[keep]) if keep.any() else np.nan

    if not np.isfinite(log_factor):
        log_factor = 0.0
    return float(2 ** log_factor)

def select_reference(counts: pd.DataFrame, lib_size: pd.Series, reference: Optional[str] = None) -> str:
    """
    Choose the reference library.

    Without an explicit ``reference`` this is the library whose upper
    quartile of count proportions is closest to the mean upper quartile. If
    the upper quartiles are essentially zero the library with the largest
    sum of square-root counts is used instead.
    """
    if reference is not None:
        if reference not in counts.columns:
            raise ConfigError(f"Reference sample {reference!r} is not in the count matrix")
        return reference

    proportions = counts.div(lib_size.reindex(counts.columns).astype(float), axis=1)
    upper_quartile = proportions.quantile(0.75, axis=0)
    if upper_quartile.median() < 1e-20:
        return str(np.sqrt(counts).sum(axis=0).idxmax())
    return str((upper_quartile - upper_quartile.mean()).abs().idxmin())

def tmm_norm_factors(
    counts: pd.DataFrame,
    lib_size: pd.Series,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    reference: Optional[str] = None,
    weighting: bool = True,
) -> Tuple[pd.Series, str]:
    """
    TMM normalization factors of every library in a count matrix.

    Features with zero counts in all libraries are ignored. Factors are
    rescaled so that they multiply to one.

    Returns:
        Tuple of (factors indexed by sample, reference library)
    """
    _check_trim("logratio_trim", logratio_trim)
    _check_trim("sum_trim", sum_trim)

    if counts.shape[1] == 0:
        raise ConfigError("Count matrix has no libraries to normalize")
    if reference is not None and reference not in counts.columns:
        raise ConfigError(f"Reference sample {reference!r} is not in the count matrix")

    expressed = counts.loc[(counts > 0).any(axis=1)]
    if expressed.shape[0] == 0 or expressed.shape[1] < 2:
        logger.warning("Fewer than two libraries or no expressed miRNAs; all factors set to 1")
        return pd.Series(1.0, index=counts.columns), reference or str(counts.columns[0])

    ref_sample = select_reference(expressed, lib_size, reference)
    logger.info(f"TMM reference library: {ref_sample}")

    factors = pd.Series(
        {
            sample: tmm_factor(
                expressed[sample], expressed[ref_sample],
                lib_obs=lib_size[sample], lib_ref=lib_size[ref_sample],
                logratio_trim=logratio_trim, sum_trim=sum_trim, weighting=weighting,
            )
            for sample in expressed.columns
        },
        dtype=float,
    )
    factors = factors / np.exp(np.mean(np.log(factors)))

    for sample, factor in factors.items():
        logger.debug(f"{sample}: norm factor {factor:.4f}")
    return factors, ref_sample

def calc_norm_factors(
    bundle: CountsBundle,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    reference: Optional[str] = None,
    weighting: bool = True,
) -> Tuple[CountsBundle, str]:
    """
    Compute TMM normalization factors for the libraries of a bundle.

    Factors are stored in the sample table as ``norm_factors``; the counts
    are untouched.

    Returns:
        Tuple of (new bundle with updated ``norm_factors``, reference library)
    """
    factors, ref_sample = tmm_norm_factors(
        bundle.counts, bundle.samples["lib_size"],
        logratio_trim=logratio_trim, sum_trim=sum_trim,
        reference=reference, weighting=weighting,
    )
    return bundle.with_samples(norm_factors=factors.reindex(bundle.samples.index)), ref_sample
