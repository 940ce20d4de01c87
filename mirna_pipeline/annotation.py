"""
miRNA annotation.

Loads the miRBase-derived annotation table, flags mature miRNAs sharing an
identical sequence and joins the annotation onto the count matrix.
"""

import csv
import logging
from pathlib import Path
from typing import List, Union

import pandas as pd

from .exceptions import IngestionError, JoinError
from .quantify import FEATURE_KEY
from .utils import validate_file_exists

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["gene_id", "gene_name", "sequence", "precursor_name"]
STRING_COLUMNS = ["gene_id", "gene_name", "chromosome", "strand", "sequence",
                  "precursor_id", "precursor_name"]

def read_annotation(annotation_file: Union[str, Path]) -> pd.DataFrame:
    """
    Read the tab-delimited annotation table (header row, no quoting).

    Raises:
        IngestionError: If the file is missing, unreadable or lacks a required column
    """
    try:
        path = validate_file_exists(annotation_file)
        df = pd.read_csv(
            path,
            sep='\t',
            quoting=csv.QUOTE_NONE,
            dtype={col: str for col in STRING_COLUMNS},
            keep_default_na=False,
        )
    except FileNotFoundError as e:
        raise IngestionError(f"Annotation file: {e}")
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise IngestionError(f"Could not parse annotation file {annotation_file}: {e}")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise IngestionError(f"Annotation file {path.name} is missing columns {missing}")

    logger.info(f"Loaded annotation for {len(df)} mature miRNAs from {path.name}")
    return df

def _annotation_columns(columns: List[str]) -> List[str]:
    """Order annotation columns: gene*, chromosome, *position*, strand, sequence, precursor*."""
    ordered = [c for c in columns if c.startswith("gene")]
    ordered += [c for c in columns if c == "chromosome"]
    ordered += [c for c in columns if "position" in c and c not in ordered]
    ordered += [c for c in columns if c == "strand"]
    ordered += ["sequence"]
    ordered += [c for c in columns if c.startswith("precursor")]
    ordered.append("identical_sequence")
    return ordered

def add_identical_sequence(annotation: pd.DataFrame) -> pd.DataFrame:
    """
    Add ``identical_sequence``: the comma-joined ids of all miRNAs sharing a sequence.

    Ids are joined in table row order and every miRNA lists itself. Rows come
    out grouped by sequence. Recomputing on the output gives the same field.
    """
    base = annotation.drop(columns=["identical_sequence"], errors="ignore")

    identical = (
        base.groupby("sequence", sort=True)["gene_id"]
        .agg(",".join)
        .rename("identical_sequence")
        .reset_index()
    )
    merged = identical.merge(base, on="sequence", how="inner")
    merged = merged[_annotation_columns(list(merged.columns))].reset_index(drop=True)

    n_shared = (merged["identical_sequence"].str.contains(",", regex=False)).sum()
    logger.debug(f"{n_shared} miRNAs share their mature sequence with another miRNA")
    return merged

def merge_annotation(annotation: pd.DataFrame, counts: pd.DataFrame) -> pd.DataFrame:
    """
    Inner-join the annotation and the raw count matrix on (gene_name, precursor_name).

    Features without a partner on either side are dropped, not filled.

    Args:
        annotation: Annotation with ``identical_sequence``
        counts: Wide count matrix indexed by (gene_name, precursor_name)

    Returns:
        Annotated counts indexed by gene_id: annotation columns then sample columns

    Raises:
        JoinError: If no feature survives or gene ids repeat after the join
    """
    counts_df = counts.reset_index()
    missing = [col for col in FEATURE_KEY if col not in counts_df.columns]
    if missing:
        raise JoinError(f"Count matrix is not indexed by {FEATURE_KEY}")

    annotated = annotation.merge(counts_df, on=FEATURE_KEY, how="inner")

    dropped_counts = len(counts_df) - len(annotated)
    dropped_annot = len(annotation) - len(annotated)
    if dropped_counts:
        logger.warning(f"{dropped_counts} count features have no annotation and were dropped")
    if dropped_annot:
        logger.info(f"{dropped_annot} annotated miRNAs are absent from the counts")

    if annotated.empty:
        raise JoinError(
            "No feature matched between annotation and counts on (gene_name, precursor_name)"
        )

    duplicated = annotated["gene_id"].duplicated()
    if duplicated.any():
        raise JoinError(
            f"gene_id not unique after join: {annotated.loc[duplicated, 'gene_id'].tolist()[:5]}"
        )

    logger.info(f"Annotated counts: {len(annotated)} features")
    return annotated.set_index("gene_id")
