"""
Visualization module.

Density of raw counts per library, used to check library comparability
before filtering.
"""

import logging
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .bundle import CountsBundle

logger = logging.getLogger(__name__)

def density_data(bundle: CountsBundle) -> pd.DataFrame:
    """
    Long table of log10(count + 1), one row per count cell.

    Returns:
        DataFrame with columns sample, gene_id and log10_count, samples in
        matrix column order
    """
    long_df = bundle.counts.rename_axis(index="gene_id").reset_index().melt(
        id_vars="gene_id", var_name="sample", value_name="count"
    )
    long_df["log10_count"] = np.log10(long_df["count"].astype(float) + 1)
    return long_df[["sample", "gene_id", "log10_count"]]

def plot_density(data: pd.DataFrame, output_file: Path, title: str = "", fmt: str = "pdf") -> Path:
    """
    Plot one density curve of log10(count + 1) per sample.

    Args:
        data: Output of :func:`density_data`
        output_file: Image path
        title: Plot title (the method label)
        fmt: Image format passed to matplotlib

    Returns:
        Path of the written image
    """
    fig, ax = plt.subplots(figsize=(10, 8))
    sns.set_style("whitegrid")

    for sample, values in data.groupby("sample", sort=False)["log10_count"]:
        if values.nunique() < 2:
            logger.warning(f"No density curve for {sample}: all log10 counts are equal")
            continue
        sns.kdeplot(x=values, ax=ax, color="black", linewidth=0.3)

    ax.set_title(title)
    ax.set_xlabel(r"$\log_{10}$(counts + 1)")
    ax.set_ylabel("Density of raw gene counts per sample")
    fig.tight_layout()
    fig.savefig(output_file, dpi=300, bbox_inches='tight', format=fmt)
    plt.close(fig)
    return Path(output_file)
