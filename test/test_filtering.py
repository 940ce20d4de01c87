"""
Tests for the zero-count and low-expression filters.
"""

import pandas as pd
import pytest

from mirna_pipeline.bundle import CountsBundle
from mirna_pipeline.exceptions import ConfigError
from mirna_pipeline.filtering import cpm, filter_low_expression, remove_zero_features
from mirna_pipeline.metadata import build_sample_metadata


def make_bundle(data, index):
    counts = pd.DataFrame(data, index=pd.Index(index, name="gene_id"))
    genes = pd.DataFrame({"gene_name": [f"name-{i}" for i in index]}, index=counts.index)
    return CountsBundle(counts=counts, samples=build_sample_metadata(counts), genes=genes)


@pytest.fixture
def two_samples():
    return make_bundle({"A6511_pre1": [100, 0, 5], "A6511_1": [50, 0, 1000]}, ["X", "Y", "Z"])


class TestCpm:
    def test_per_million(self, two_samples):
        values = cpm(two_samples.counts, two_samples.samples["lib_size"])
        assert values.loc["X", "A6511_pre1"] == pytest.approx(100 / 105 * 1e6)
        assert values.loc["Z", "A6511_1"] == pytest.approx(1000 / 1050 * 1e6)

    def test_norm_factors_scale_library(self, two_samples):
        samples = two_samples.samples
        values = cpm(two_samples.counts, samples["lib_size"], pd.Series([2.0, 1.0], index=samples.index))
        assert values.loc["X", "A6511_pre1"] == pytest.approx(100 / 210 * 1e6)


class TestRemoveZeroFeatures:
    def test_drops_all_zero_rows(self, two_samples):
        filtered = remove_zero_features(two_samples)
        assert list(filtered.counts.index) == ["X", "Z"]
        assert list(filtered.genes.index) == ["X", "Z"]

    def test_does_not_modify_input(self, two_samples):
        remove_zero_features(two_samples)
        assert list(two_samples.counts.index) == ["X", "Y", "Z"]

    def test_keeps_samples(self, two_samples):
        filtered = remove_zero_features(two_samples)
        assert list(filtered.counts.columns) == list(two_samples.counts.columns)
        pd.testing.assert_frame_equal(filtered.samples, two_samples.samples)


class TestFilterLowExpression:
    def test_two_sample_scenario(self, two_samples):
        no_zeros = remove_zero_features(two_samples)
        filtered = filter_low_expression(no_zeros, cpm_threshold=50, min_libraries=1)
        assert list(filtered.counts.index) == ["X", "Z"]

    def test_threshold_is_strict(self):
        # 2**10 of 2**20 reads is exactly 976.5625 CPM
        bundle = make_bundle({"A1_pre1": [1024, 1047552], "A1_1": [1024, 1047552]}, ["m1", "m2"])
        filtered = filter_low_expression(bundle, cpm_threshold=976.5625, min_libraries=1)
        assert list(filtered.counts.index) == ["m2"]

    def test_min_libraries(self):
        bundle = make_bundle(
            {"A1_pre1": [1, 10], "A1_1": [1000, 10], "A2_1": [1000, 10]},
            ["m1", "m2"],
        )
        assert list(filter_low_expression(bundle, 1e5, 2).counts.index) == ["m1"]
        assert filter_low_expression(bundle, 1e5, 3).n_features == 0

    def test_uses_stored_library_sizes(self, two_samples):
        # lib_size stays at the pre-filter value after removing rows
        no_x = two_samples.subset_features([False, True, True])
        assert no_x.samples["lib_size"].tolist() == [105, 1050]
        filtered = filter_low_expression(no_x, cpm_threshold=900_000, min_libraries=1)
        assert list(filtered.counts.index) == ["Z"]

    def test_monotonic_and_nested(self, two_samples):
        stage1 = remove_zero_features(two_samples)
        stage2 = filter_low_expression(stage1, cpm_threshold=50_000, min_libraries=2)

        assert stage1.n_features <= two_samples.n_features
        assert stage2.n_features <= stage1.n_features
        assert set(stage2.counts.index) <= set(stage1.counts.index)
        assert list(stage2.counts.columns) == list(stage2.samples.index)

    @pytest.mark.parametrize("threshold,min_libraries", [(-1, 1), (50, 0), (50, 3)])
    def test_invalid_parameters(self, two_samples, threshold, min_libraries):
        with pytest.raises(ConfigError):
            filter_low_expression(two_samples, cpm_threshold=threshold, min_libraries=min_libraries)
