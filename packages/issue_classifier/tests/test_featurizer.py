"""Tests for label encoding, text featurization, concatenation and caching."""

import numpy as np
import pytest
import scipy.sparse as sp

from packages.issue_classifier.config import TrainingConfig
from packages.issue_classifier.errors import SchemaMismatchError, UnknownLabelError
from packages.issue_classifier.featurizer import (
    FeatureCache,
    FeatureExtractionPipeline,
    LabelEncoding,
    TextFeaturizer,
)
from packages.issue_classifier.schema import Record


class TestLabelEncoding:
    def test_keys_follow_sorted_label_order(self):
        encoding = LabelEncoding.fit(["b", "c", "a", "b"])
        assert encoding.labels == ("a", "b", "c")
        assert encoding.encode("a") == 0
        assert encoding.encode("c") == 2
        assert encoding.decode(1) == "b"

    def test_mapping_independent_of_input_order(self):
        assert LabelEncoding.fit(["x", "y", "z"]) == LabelEncoding.fit(["z", "x", "y"])

    def test_unknown_label_raises(self):
        encoding = LabelEncoding.fit(["a", "b"])
        with pytest.raises(UnknownLabelError) as exc:
            encoding.encode("c", record_id="r9")
        assert exc.value.record_id == "r9"
        assert exc.value.label == "c"

    def test_missing_label_raises_schema_mismatch(self):
        encoding = LabelEncoding.fit(["a", "b"])
        with pytest.raises(SchemaMismatchError):
            encoding.encode_records([Record(id="x", title="t", description="d")])


class TestTextFeaturizer:
    def test_transform_is_deterministic(self):
        config = TrainingConfig()
        featurizer = TextFeaturizer.fit("title", ["Hello world", "Goodbye world"], config)
        first = featurizer.transform(["hello there world"]).toarray()
        second = featurizer.transform(["hello there world"]).toarray()
        np.testing.assert_array_equal(first, second)

    def test_dimension_fixed_at_fit_time(self):
        featurizer = TextFeaturizer.fit("title", ["alpha beta", "gamma"], TrainingConfig())
        unseen = featurizer.transform(["completely unseen vocabulary words here"])
        assert unseen.shape == (1, featurizer.dim)

    def test_rows_are_unit_norm_and_case_insensitive(self):
        featurizer = TextFeaturizer.fit("title", ["Entity Framework", "SignalR"], TrainingConfig())
        rows = featurizer.transform(["ENTITY framework", "entity FRAMEWORK"]).toarray()
        np.testing.assert_allclose(np.linalg.norm(rows, axis=1), [1.0, 1.0])
        np.testing.assert_array_equal(rows[0], rows[1])

    def test_empty_texts_give_zero_dimension(self):
        featurizer = TextFeaturizer.fit("description", ["", ""], TrainingConfig())
        assert featurizer.dim == 0
        assert featurizer.transform(["anything"]).shape == (1, 0)

    def test_state_round_trip_transforms_identically(self):
        featurizer = TextFeaturizer.fit("title", ["EF crashes", "socket closes"], TrainingConfig())
        restored = TextFeaturizer.from_state(featurizer.to_state())
        texts = ["EF socket", "closes crashes now"]
        np.testing.assert_array_equal(
            featurizer.transform(texts).toarray(), restored.transform(texts).toarray()
        )

    def test_non_contiguous_vocabulary_rejected(self):
        state = TextFeaturizer.fit("title", ["a b c"], TrainingConfig()).to_state()
        state["word_vocabulary"] = {"a": 0, "b": 5}
        with pytest.raises(ValueError):
            TextFeaturizer.from_state(state)


class TestFeatureExtractionPipeline:
    def test_fit_builds_encoding_and_fixed_dimension(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        assert stage.labels.labels == ("EntityFramework", "WebSockets")
        matrix = stage.transform(training_records)
        assert sp.issparse(matrix)
        assert matrix.shape == (len(training_records), stage.dim)
        assert stage.dim == stage.title.dim + stage.description.dim

    def test_training_record_without_label_rejected(self, training_records):
        records = training_records + [Record(id="nolabel", title="t", description="d")]
        with pytest.raises(SchemaMismatchError) as exc:
            FeatureExtractionPipeline().fit(records)
        assert exc.value.record_id == "nolabel"

    def test_transform_record_deterministic(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        record = {"title": "EF crashes", "description": "database socket"}
        np.testing.assert_array_equal(
            stage.transform_record(record), stage.transform_record(record)
        )

    def test_transform_record_requires_text_fields(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        with pytest.raises(SchemaMismatchError):
            stage.transform_record({"id": "x", "title": "only a title"})

    def test_concatenation_is_positional(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        title_only = stage.transform_record(Record(title="websocket database", description=""))
        description_only = stage.transform_record(
            Record(title="", description="websocket database")
        )

        assert np.count_nonzero(title_only[stage.description_slice]) == 0
        assert np.count_nonzero(title_only[stage.title_slice]) > 0
        assert np.count_nonzero(description_only[stage.title_slice]) == 0
        assert np.count_nonzero(description_only[stage.description_slice]) > 0

    def test_title_block_matches_standalone_title_featurizer(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        record = Record(title="Entity Framework crashes", description="socket closes")
        vector = stage.transform_record(record)
        np.testing.assert_array_equal(
            vector[stage.title_slice], stage.title.transform([record.title]).toarray()[0]
        )
        np.testing.assert_array_equal(
            vector[stage.description_slice],
            stage.description.transform([record.description]).toarray()[0],
        )

    def test_swapping_block_order_moves_but_keeps_nonzero_values(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        record = Record(title="Entity Framework crashes", description="websocket closes")
        title_block = stage.title.transform([record.title])
        description_block = stage.description.transform([record.description])

        forward = sp.hstack([title_block, description_block]).toarray()[0]
        swapped = sp.hstack([description_block, title_block]).toarray()[0]

        np.testing.assert_array_equal(forward, stage.transform_record(record))
        assert not np.array_equal(np.flatnonzero(forward), np.flatnonzero(swapped))
        np.testing.assert_array_equal(
            np.sort(forward[forward != 0]), np.sort(swapped[swapped != 0])
        )


class TestFeatureCache:
    def test_enabled_cache_featurizes_once(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        cache = FeatureCache(stage, training_records, enabled=True)
        first = cache()
        second = cache()
        assert first is second
        assert cache.builds == 1

    def test_disabled_cache_rebuilds_identical_tensor(self, training_records):
        stage = FeatureExtractionPipeline().fit(training_records)
        cache = FeatureCache(stage, training_records, enabled=False)
        first = cache()
        second = cache()
        assert cache.builds == 2
        assert first is not second
        assert np.array_equal(first.to_dense().numpy(), second.to_dense().numpy())
