"""
Sample metadata derived from sample identifiers.

Identifiers look like ``A6522_pre1`` or ``A6522_10``: the animal id, an
underscore, then the time point token. Tokens are mapped through a small
rule table and must land on one of the fixed factor levels, whose order is
used for downstream contrasts.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

import pandas as pd

from .exceptions import AlignmentError, ParseError

logger = logging.getLogger(__name__)

TIME_POINT_LEVELS = ["pre2", "pre1", "W1", "W2", "W6", "W10", "W12"]
GROUP_LEVELS = ["Control", "W1", "W2", "W6", "W10", "W12"]

# (full-match pattern on the time point token, replacement template)
TIME_POINT_RULES: List[Tuple[str, str]] = [
    (r"pre([12])", r"pre\1"),
    (r"(\d+)", r"W\1"),
]
GROUP_RULES: List[Tuple[str, str]] = [
    (r"pre[12]", "Control"),
    (r"(\d+)", r"W\1"),
]

SAMPLE_COLUMNS = ["group", "lib_size", "norm_factors", "animal", "time_point"]

@dataclass(frozen=True)
class SampleInfo:
    animal: str
    time_point: str
    group: str

def _apply_rules(token: str, rules: List[Tuple[str, str]], levels: List[str], sample_id: str, field: str) -> str:
    for pattern, template in rules:
        match = re.fullmatch(pattern, token)
        if match:
            value = match.expand(template)
            if value in levels:
                return value
            raise ParseError(
                f"Sample {sample_id!r}: {field} {value!r} is not one of {levels}"
            )
    raise ParseError(f"Sample {sample_id!r}: unrecognised {field} token {token!r}")

def parse_sample_id(sample_id: str) -> SampleInfo:
    """
    Split a sample identifier into animal, time point and group.

    >>> parse_sample_id("6621_pre1")
    SampleInfo(animal='6621', time_point='pre1', group='Control')
    >>> parse_sample_id("6621_1")
    SampleInfo(animal='6621', time_point='W1', group='W1')

    Raises:
        ParseError: If the identifier has no time point or it maps to no level
    """
    animal, sep, token = sample_id.partition("_")
    if not sep or not animal or not token:
        raise ParseError(f"Sample {sample_id!r} is not of the form <animal>_<time point>")

    return SampleInfo(
        animal=animal,
        time_point=_apply_rules(token, TIME_POINT_RULES, TIME_POINT_LEVELS, sample_id, "time point"),
        group=_apply_rules(token, GROUP_RULES, GROUP_LEVELS, sample_id, "group"),
    )

def build_sample_metadata(counts: pd.DataFrame) -> pd.DataFrame:
    """
    Build the sample table for a count matrix.

    Rows follow the matrix columns. ``lib_size`` is the column sum and
    ``norm_factors`` starts at 1.

    Returns:
        DataFrame indexed by sample with columns group, lib_size,
        norm_factors, animal and time_point
    """
    samples = list(counts.columns)
    parsed = [parse_sample_id(s) for s in samples]

    metadata = pd.DataFrame(
        {
            "group": pd.Categorical([p.group for p in parsed], categories=GROUP_LEVELS, ordered=True),
            "lib_size": counts.sum(axis=0).astype('int64').to_numpy(),
            "norm_factors": 1.0,
            "animal": pd.Categorical([p.animal for p in parsed]),
            "time_point": pd.Categorical(
                [p.time_point for p in parsed], categories=TIME_POINT_LEVELS, ordered=True
            ),
        },
        index=pd.Index(samples, name="sample"),
    )

    logger.info(
        f"Sample metadata: {len(metadata)} samples, "
        f"{metadata['animal'].nunique()} animals, "
        f"{metadata['time_point'].nunique()} time points"
    )
    check_alignment(metadata, counts)
    return metadata[SAMPLE_COLUMNS]

def check_alignment(metadata: pd.DataFrame, counts: pd.DataFrame) -> None:
    """
    Require metadata rows and matrix columns to be the same samples in the same order.

    Raises:
        AlignmentError: On any difference in content or order
    """
    rows = list(metadata.index)
    cols = list(counts.columns)
    if rows == cols:
        return

    if set(rows) != set(cols):
        only_meta = sorted(set(rows) - set(cols))
        only_counts = sorted(set(cols) - set(rows))
        raise AlignmentError(
            f"Samples differ: only in metadata {only_meta}, only in counts {only_counts}"
        )
    if len(rows) != len(cols):
        raise AlignmentError(
            f"Metadata has {len(rows)} rows but counts have {len(cols)} columns"
        )
    position = next(i for i, (r, c) in enumerate(zip(rows, cols)) if r != c)
    raise AlignmentError(
        f"Sample order differs at position {position}: "
        f"metadata has {rows[position]!r}, counts has {cols[position]!r}"
    )
