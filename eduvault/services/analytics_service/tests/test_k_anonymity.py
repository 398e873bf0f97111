"""Tests for k-anonymous aggregation."""
import pytest

from eduvault.services.analytics_service.k_anonymity import (
    AnonymizingAggregator,
    MetricKind,
    MetricSpec,
    normalize_metrics,
    K_ANONYMITY_THRESHOLD,
)


def _rows(course, students, score=80.0, difficulty="medium"):
    return [
        {"student_id": f"{course}-s{i}", "course": course, "difficulty": difficulty, "score": score + i}
        for i in range(students)
    ]


@pytest.fixture
def aggregator():
    """Create an AnonymizingAggregator instance."""
    return AnonymizingAggregator()


class TestKAnonymityThreshold:
    """Tests for k-anonymity threshold enforcement."""

    def test_default_threshold_is_five(self, aggregator):
        assert K_ANONYMITY_THRESHOLD == 5
        assert aggregator.k_threshold == 5

    def test_four_subjects_suppressed_five_visible(self, aggregator):
        rows = _rows("algebra", 4) + _rows("geometry", 5)

        stats = aggregator.aggregate(rows, ["course"], {"avg": "score:mean"})

        by_course = {s.group_key[0]: s for s in stats}
        assert by_course["algebra"].suppressed is True
        assert by_course["algebra"].subject_count is None
        assert dict(by_course["algebra"].metrics) == {}
        assert by_course["geometry"].suppressed is False
        assert by_course["geometry"].subject_count == 5
        assert by_course["geometry"].metrics["avg"] == pytest.approx(82.0)

    def test_single_subject_always_suppressed(self, aggregator):
        stats = aggregator.aggregate(_rows("chem", 1), ["course"], {"n": "count"})

        assert stats[0].suppressed is True

    def test_distinct_subjects_not_rows(self, aggregator):
        """Many rows from few students must still be suppressed."""
        rows = [
            {"student_id": f"s{i % 3}", "course": "bio", "score": 50 + i}
            for i in range(30)
        ]

        stats = aggregator.aggregate(rows, ["course"], {"avg": "score:mean"})

        assert stats[0].suppressed is True

    def test_custom_threshold(self, aggregator):
        rows = _rows("algebra", 4)

        stats = aggregator.aggregate(rows, ["course"], {"n": "count"}, k_threshold=3)

        assert stats[0].suppressed is False
        assert stats[0].subject_count == 4

    def test_invalid_threshold_rejected(self, aggregator):
        with pytest.raises(ValueError):
            aggregator.aggregate(_rows("a", 5), ["course"], {"n": "count"}, k_threshold=0)

    def test_constructor_rejects_invalid_threshold(self):
        with pytest.raises(ValueError):
            AnonymizingAggregator(k_threshold=0)

    def test_suppression_log_has_no_counts(self, aggregator, caplog):
        with caplog.at_level("INFO"):
            aggregator.aggregate(_rows("algebra", 3), ["course"], {"n": "count"})

        suppressed = [r for r in caplog.records if r.getMessage() == "K_ANONYMITY_SUPPRESSED"]
        assert len(suppressed) == 1
        assert not hasattr(suppressed[0], "subject_count")
        assert not hasattr(suppressed[0], "group_size")


class TestMetrics:
    """Metric computation."""

    def test_mean_median_count(self, aggregator):
        rows = [
            {"student_id": f"s{i}", "course": "a", "score": score}
            for i, score in enumerate([10, 20, 30, 40, 100])
        ]

        stats = aggregator.aggregate(rows, ["course"], {
            "mean": ("score", "mean"),
            "median": "score:median",
            "rows": "count",
            "scored": "score:count",
        })

        metrics = stats[0].metrics
        assert metrics["mean"] == pytest.approx(40.0)
        assert metrics["median"] == pytest.approx(30.0)
        assert metrics["rows"] == 5
        assert metrics["scored"] == 5

    def test_missing_values_skipped(self, aggregator):
        rows = _rows("a", 5)
        rows[0]["score"] = None

        stats = aggregator.aggregate(rows, ["course"], {"scored": "score:count"})

        assert stats[0].metrics["scored"] == 4

    def test_metric_with_no_values_is_none(self, aggregator):
        stats = aggregator.aggregate(_rows("a", 5), ["course"], {"t": "time_on_task:mean"})

        assert stats[0].metrics["t"] is None

    def test_non_numeric_value_rejected(self, aggregator):
        rows = _rows("a", 5)
        rows[2]["score"] = "high"

        with pytest.raises(ValueError):
            aggregator.aggregate(rows, ["course"], {"avg": "score:mean"})

    def test_unknown_kind_rejected(self, aggregator):
        with pytest.raises(ValueError, match="Unknown aggregation"):
            aggregator.aggregate(_rows("a", 5), ["course"], {"p": "score:p95"})

    def test_metric_spec_instances(self, aggregator):
        spec = MetricSpec(name="avg", field="score", kind=MetricKind.MEAN)

        stats = aggregator.aggregate(_rows("a", 5), ["course"], [spec])

        assert stats[0].metrics["avg"] == pytest.approx(82.0)

    def test_normalize_rejects_duplicate_names(self):
        spec = MetricSpec(name="avg", field="score", kind=MetricKind.MEAN)

        with pytest.raises(ValueError):
            normalize_metrics([spec, spec])

    def test_mean_requires_field(self):
        with pytest.raises(ValueError):
            MetricSpec.parse("avg", "mean")

    @pytest.mark.parametrize("metrics", [["score:mean"], "score:mean", [("score", "mean")]])
    def test_list_of_shorthand_rejected(self, aggregator, metrics):
        with pytest.raises(ValueError):
            aggregator.aggregate(_rows("a", 5), ["course"], metrics)


class TestGrouping:
    """Grouping and determinism."""

    def test_multi_field_groups(self, aggregator):
        rows = _rows("algebra", 6, difficulty="hard") + _rows("algebra", 5, difficulty="easy")
        for i, row in enumerate(rows):
            row["student_id"] = f"s{i}"

        stats = aggregator.aggregate(rows, ["course", "difficulty"], {"n": "count"})

        assert [s.group_key for s in stats] == [("algebra", "easy"), ("algebra", "hard")]

    def test_output_is_deterministic(self, aggregator):
        rows = _rows("b", 5) + _rows("a", 6) + _rows("c", 2)

        first = aggregator.aggregate(rows, ["course"], {"avg": "score:mean"})
        second = aggregator.aggregate(list(reversed(rows)), ["course"], {"avg": "score:mean"})

        assert first == second
        assert [s.group_key[0] for s in first] == ["a", "b", "c"]

    def test_rows_without_subject_ignored(self, aggregator):
        rows = _rows("a", 4) + [{"course": "a", "score": 1}] * 10

        stats = aggregator.aggregate(rows, ["course"], {"n": "count"})

        assert stats[0].suppressed is True

    def test_single_group_field_as_string(self, aggregator):
        stats = aggregator.aggregate(_rows("a", 5), "course", {"n": "count"})

        assert stats[0].group_key == ("a",)

    def test_custom_subject_field(self):
        aggregator = AnonymizingAggregator(subject_field="learner")
        rows = [{"learner": f"l{i}", "course": "a"} for i in range(5)]

        stats = aggregator.aggregate(rows, ["course"], {"n": "count"})

        assert stats[0].subject_count == 5

    def test_empty_rows(self, aggregator):
        assert aggregator.aggregate([], ["course"], {"n": "count"}) == []

    @pytest.mark.parametrize("bad_row", ["s1", 42, ["student_id", "s1"]])
    def test_non_mapping_row_rejected(self, aggregator, bad_row):
        rows = _rows("a", 5) + [bad_row]

        with pytest.raises(ValueError):
            aggregator.aggregate(rows, ["course"], {"n": "count"})
