"""
Quantification module for miRDeep2 counts.

This module discovers the per-sample quantifier files, reads the raw read
counts and assembles them into a features x samples count matrix.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Iterable, Union

import numpy as np
import pandas as pd

from .exceptions import IngestionError
from .utils import validate_directory_exists

logger = logging.getLogger(__name__)

FEATURE_KEY = ["gene_name", "precursor_name"]

# miRDeep2 quantifier column names
QUANTIFIER_COLUMNS = {"#miRNA": "gene_name", "precursor": "precursor_name"}
COUNT_COLUMN = "read_count"

@dataclass(frozen=True)
class SampleFile:
    """One quantifier output file and the sample it belongs to."""

    path: Path
    sample_id: str

def sample_id_from_filename(filename: str, suffix: str = "_expressed.csv", prefix: str = "A") -> str:
    """
    Derive a sample identifier from a quantifier file name.

    The suffix is stripped and names starting with a digit get ``prefix``
    so they are usable as column names (``6522_pre1_expressed.csv`` ->
    ``A6522_pre1``).
    """
    name = filename[:-len(suffix)] if suffix and filename.endswith(suffix) else filename
    if not name:
        raise IngestionError(f"File name {filename!r} is empty after removing {suffix!r}")
    if name[0].isdigit():
        name = f"{prefix}{name}"
    return name

def discover_count_files(
    counts_dir: Union[str, Path],
    pattern: str = "^6",
    suffix: str = "_expressed.csv",
    prefix: str = "A",
) -> List[SampleFile]:
    """
    List the quantifier files of a directory.

    Args:
        counts_dir: Directory holding one quantifier file per library
        pattern: Regular expression matched against the start of file names
        suffix: File name suffix removed to build the sample identifier
        prefix: Prefix added to sample identifiers starting with a digit

    Returns:
        SampleFile records sorted by sample identifier

    Raises:
        IngestionError: If no file matches or two files share a sample id
    """
    try:
        counts_dir = validate_directory_exists(counts_dir)
    except FileNotFoundError as e:
        raise IngestionError(str(e))

    regex = re.compile(pattern)
    files = sorted(
        p for p in counts_dir.iterdir()
        if p.is_file() and regex.match(p.name)
    )
    if not files:
        raise IngestionError(f"No files matching {pattern!r} found in {counts_dir}")

    sample_files = [
        SampleFile(path=p, sample_id=sample_id_from_filename(p.name, suffix, prefix))
        for p in files
    ]
    _check_unique_samples(sample_files)

    logger.info(f"Found {len(sample_files)} quantifier files in {counts_dir}")
    return sorted(sample_files, key=lambda s: s.sample_id)

def _check_unique_samples(sample_files: Iterable[SampleFile]) -> None:
    seen = {}
    for sample_file in sample_files:
        if sample_file.sample_id in seen:
            raise IngestionError(
                f"Files {seen[sample_file.sample_id].name} and {sample_file.path.name} "
                f"both map to sample {sample_file.sample_id}"
            )
        seen[sample_file.sample_id] = sample_file.path

def read_count_file(sample_file: SampleFile) -> pd.DataFrame:
    """
    Read one miRDeep2 quantifier file.

    Only the feature name, precursor name and raw read count are kept; the
    total, sequence and normalized columns are recomputed downstream.

    Returns:
        DataFrame with columns gene_name, precursor_name, read_count
    """
    path = sample_file.path
    try:
        df = pd.read_csv(path, sep='\t')
    except FileNotFoundError:
        raise IngestionError(f"Quantifier file not found: {path}")
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise IngestionError(f"Could not parse quantifier file {path}: {e}")

    df = df.rename(columns=QUANTIFIER_COLUMNS)
    missing = [col for col in FEATURE_KEY + [COUNT_COLUMN] if col not in df.columns]
    if missing:
        raise IngestionError(f"{path.name}: missing required columns {missing}")
    df = df[FEATURE_KEY + [COUNT_COLUMN]]

    duplicated = df.duplicated(subset=FEATURE_KEY, keep=False)
    if duplicated.any():
        keys = df.loc[duplicated, FEATURE_KEY].drop_duplicates().head(5)
        raise IngestionError(
            f"{path.name}: duplicate (gene_name, precursor_name) rows: "
            f"{[tuple(k) for k in keys.itertuples(index=False)]}"
        )

    counts = pd.to_numeric(df[COUNT_COLUMN], errors='coerce')
    bad = counts.isna() | (counts < 0) | (counts % 1 != 0)
    if bad.any():
        row = df.loc[bad].iloc[0]
        raise IngestionError(
            f"{path.name}: invalid read count {row[COUNT_COLUMN]!r} "
            f"for {row['gene_name']} ({row['precursor_name']})"
        )

    df = df.assign(read_count=counts.astype('int64'))
    logger.debug(f"Read {len(df)} features from {path.name}")
    return df

def load_counts(sample_files: List[SampleFile]) -> pd.DataFrame:
    """
    Read every quantifier file into one long table.

    Returns:
        DataFrame with columns sample, gene_name, precursor_name, read_count
    """
    if not sample_files:
        raise IngestionError("No quantifier files to load")
    _check_unique_samples(sample_files)

    tables = [
        read_count_file(sample_file).assign(sample=sample_file.sample_id)
        for sample_file in sample_files
    ]
    long_df = pd.concat(tables, ignore_index=True)
    return long_df[["sample"] + FEATURE_KEY + [COUNT_COLUMN]]

def pivot_counts(long_df: pd.DataFrame) -> pd.DataFrame:
    """
    Spread the long table into a wide matrix, one column per sample.

    Rows are indexed by (gene_name, precursor_name) and columns are sorted by
    sample identifier, whatever the order of the input rows. Every sample
    must list every feature; a missing count is an error, not a zero.

    Raises:
        IngestionError: If a (sample, gene_name, precursor_name) key repeats
            or a feature is missing from a sample
    """
    key = ["sample"] + FEATURE_KEY
    duplicated = long_df.duplicated(subset=key, keep=False)
    if duplicated.any():
        first = long_df.loc[duplicated].iloc[0]
        raise IngestionError(
            f"Duplicate count rows for {first['gene_name']} ({first['precursor_name']}) "
            f"in sample {first['sample']}"
        )

    wide = long_df.pivot(index=FEATURE_KEY, columns="sample", values=COUNT_COLUMN)
    wide = wide.reindex(columns=sorted(wide.columns)).sort_index()

    missing = np.argwhere(wide.isna().to_numpy())
    if missing.size:
        row, col = missing[0]
        gene_name, precursor_name = wide.index[row]
        raise IngestionError(
            f"{len(missing)} missing count(s); first: {gene_name} ({precursor_name}) "
            f"not listed in sample {wide.columns[col]}"
        )

    wide = wide.astype('int64')
    wide.columns.name = None
    return wide

def unpivot_counts(wide: pd.DataFrame) -> pd.DataFrame:
    """Melt a wide count matrix back to (sample, gene_name, precursor_name, read_count) rows."""
    long_df = wide.reset_index().melt(
        id_vars=FEATURE_KEY, var_name="sample", value_name=COUNT_COLUMN
    )
    return long_df[["sample"] + FEATURE_KEY + [COUNT_COLUMN]]

def build_count_matrix(sample_files: List[SampleFile]) -> pd.DataFrame:
    """Load the quantifier files and return the wide raw count matrix."""
    logger.info(f"Building count matrix from {len(sample_files)} files")
    counts = pivot_counts(load_counts(sample_files))
    logger.info(f"Count matrix: {counts.shape[0]} features x {counts.shape[1]} samples")
    return counts
