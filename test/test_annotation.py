"""
Tests for annotation loading, identical sequence detection and the counts join.
"""

import pandas as pd
import pytest

from mirna_pipeline.annotation import add_identical_sequence, merge_annotation, read_annotation
from mirna_pipeline.exceptions import IngestionError, JoinError


@pytest.fixture
def annotation():
    return pd.DataFrame({
        "gene_id": ["MIMAT1", "MIMAT2", "MIMAT3", "MIMAT4"],
        "gene_name": ["bta-miR-1", "bta-miR-2a", "bta-miR-2b", "bta-miR-1"],
        "chromosome": ["1", "2", "3", "4"],
        "start_position": [10, 20, 30, 40],
        "end_position": [31, 41, 51, 61],
        "strand": ["+", "-", "+", "-"],
        "sequence": ["UGGAAUG", "ACGUACG", "ACGUACG", "UGGAAUG"],
        "precursor_id": ["MI1", "MI2", "MI3", "MI4"],
        "precursor_name": ["bta-mir-1", "bta-mir-2a", "bta-mir-2b", "bta-mir-1-2"],
    })


@pytest.fixture
def counts():
    index = pd.MultiIndex.from_tuples(
        [("bta-miR-1", "bta-mir-1"), ("bta-miR-2a", "bta-mir-2a"),
         ("bta-miR-1", "bta-mir-1-2"), ("bta-miR-novel", "bta-mir-novel")],
        names=["gene_name", "precursor_name"],
    )
    return pd.DataFrame({"A6511_pre1": [10, 0, 4, 9], "A6511_1": [12, 3, 0, 1]}, index=index)


class TestReadAnnotation:
    """Reading the annotation table."""

    def test_reads_tab_delimited_without_quoting(self, tmp_path, annotation):
        path = tmp_path / "miRNA_Btaurus.txt"
        lines = ["\t".join(annotation.columns)]
        lines += ["\t".join(str(v) for v in row) for row in annotation.itertuples(index=False)]
        lines[1] = lines[1].replace("\t+\t", '\t"+\t', 1)
        path.write_text("\n".join(lines) + "\n")

        df = read_annotation(path)

        assert len(df) == 4
        assert df.loc[0, "strand"] == '"+'
        assert df.loc[0, "chromosome"] == "1"
        assert df.loc[0, "gene_id"] == "MIMAT1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(IngestionError):
            read_annotation(tmp_path / "missing.txt")

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "annot.txt"
        path.write_text("gene_id\tsequence\nMIMAT1\tACGU\n")
        with pytest.raises(IngestionError, match="gene_name"):
            read_annotation(path)


class TestIdenticalSequence:
    """Identical mature sequence detection."""

    def test_lists_all_ids_sharing_sequence(self, annotation):
        result = add_identical_sequence(annotation).set_index("gene_id")

        assert result.loc["MIMAT1", "identical_sequence"] == "MIMAT1,MIMAT4"
        assert result.loc["MIMAT4", "identical_sequence"] == "MIMAT1,MIMAT4"
        assert result.loc["MIMAT2", "identical_sequence"] == "MIMAT2,MIMAT3"

    def test_always_contains_own_id(self, annotation):
        result = add_identical_sequence(annotation)
        for gene_id, identical in zip(result["gene_id"], result["identical_sequence"]):
            assert gene_id in identical.split(",")

    def test_case_sensitive(self, annotation):
        annotation.loc[3, "sequence"] = "uggaaug"
        result = add_identical_sequence(annotation).set_index("gene_id")
        assert result.loc["MIMAT1", "identical_sequence"] == "MIMAT1"

    def test_idempotent(self, annotation):
        once = add_identical_sequence(annotation)
        twice = add_identical_sequence(once)
        pd.testing.assert_frame_equal(once, twice)

    def test_column_order(self, annotation):
        result = add_identical_sequence(annotation)
        assert list(result.columns) == [
            "gene_id", "gene_name", "chromosome", "start_position", "end_position",
            "strand", "sequence", "precursor_id", "precursor_name", "identical_sequence",
        ]


class TestMergeAnnotation:
    """Inner join of annotation and counts."""

    def test_inner_join_drops_unmatched(self, annotation, counts):
        merged = merge_annotation(add_identical_sequence(annotation), counts)

        assert sorted(merged.index) == ["MIMAT1", "MIMAT2", "MIMAT4"]
        assert "bta-miR-novel" not in merged["gene_name"].tolist()
        assert merged.loc["MIMAT4", "A6511_pre1"] == 4
        assert merged.loc["MIMAT1", "A6511_1"] == 12
        assert len(merged) <= min(len(annotation), len(counts))

    def test_join_requires_exact_key(self, annotation, counts):
        counts = counts.rename(index={"bta-miR-2a": "BTA-MIR-2A"}, level="gene_name")
        merged = merge_annotation(add_identical_sequence(annotation), counts)
        assert "MIMAT2" not in merged.index

    def test_empty_join(self, annotation, counts):
        counts = counts.rename(index=lambda name: name.upper(), level="gene_name")
        with pytest.raises(JoinError, match="No feature matched"):
            merge_annotation(add_identical_sequence(annotation), counts)

    def test_duplicate_gene_ids(self, annotation, counts):
        annotation.loc[3, "gene_id"] = "MIMAT1"
        with pytest.raises(JoinError, match="not unique"):
            merge_annotation(annotation.assign(identical_sequence=""), counts)
