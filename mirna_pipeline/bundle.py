"""
The counts bundle passed between pipeline stages.

A bundle holds the count matrix together with the sample table and the
feature annotation, kept aligned on both axes. Stages never modify a bundle;
they return a new one.
"""

from dataclasses import dataclass, replace

import numpy as np
import pandas as pd

from .exceptions import AlignmentError
from .metadata import build_sample_metadata, check_alignment

@dataclass(frozen=True)
class CountsBundle:
    """
    Count matrix with sample and feature metadata.

    Attributes:
        counts: Integer counts, features x samples
        samples: One row per matrix column (group, lib_size, norm_factors, ...)
        genes: One row per matrix row (annotation columns)
    """

    counts: pd.DataFrame
    samples: pd.DataFrame
    genes: pd.DataFrame

    def __post_init__(self):
        check_alignment(self.samples, self.counts)
        if not self.genes.index.equals(self.counts.index):
            raise AlignmentError("Gene annotation rows do not match count matrix rows")

    @classmethod
    def from_annotated(cls, annotated: pd.DataFrame, sample_columns) -> "CountsBundle":
        """Split annotated counts into matrix and annotation, and derive the sample table."""
        sample_columns = list(sample_columns)
        counts = annotated[sample_columns].astype('int64')
        genes = annotated.drop(columns=sample_columns)
        return cls(counts=counts, samples=build_sample_metadata(counts), genes=genes)

    @property
    def n_features(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]

    def subset_features(self, keep) -> "CountsBundle":
        """New bundle with only the rows selected by a boolean mask; samples unchanged."""
        keep = np.asarray(keep, dtype=bool)
        return replace(
            self,
            counts=self.counts.loc[keep].copy(),
            genes=self.genes.loc[keep].copy(),
        )

    def with_samples(self, **columns) -> "CountsBundle":
        """New bundle with sample table columns replaced."""
        return replace(self, samples=self.samples.assign(**columns))

    def annotated_counts(self) -> pd.DataFrame:
        """Annotation and counts side by side, as written to the raw counts table."""
        return pd.concat([self.genes, self.counts], axis=1)
