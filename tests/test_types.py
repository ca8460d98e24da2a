"""Tests for reviewflow.lib.types module."""

import pytest

from reviewflow.lib.types import (
    ALL_DIMENSIONS,
    CodeSegment,
    Dimension,
    Finding,
    RepoRef,
    RunStats,
    Scores,
    Severity,
)


class TestSeverity:
    def test_rank_order(self):
        ranks = [s.rank for s in (Severity.INFO, Severity.MINOR, Severity.MAJOR, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4

    def test_parse_case_insensitive(self):
        assert Severity.parse("major") is Severity.MAJOR
        assert Severity.parse(" Critical ") is Severity.CRITICAL
        assert Severity.parse(Severity.INFO) is Severity.INFO

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown severity"):
            Severity.parse("BLOCKER")


class TestDimension:
    def test_fixed_set(self):
        assert {d.value for d in ALL_DIMENSIONS} == {
            "SECURITY", "QUALITY", "MAINTAINABILITY", "PERFORMANCE", "TEST_COVERAGE",
        }

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            Dimension.parse("STYLE")


class TestFinding:
    """Findings validate themselves on construction."""

    def test_valid_finding(self, make_finding):
        f = make_finding(start_line=3, end_line=5)
        assert f.line_span == 3

    def test_sources_coerced_to_frozenset(self, make_finding):
        f = make_finding(sources={"a", "b"})
        assert f.sources == frozenset({"a", "b"})

    def test_empty_sources_rejected(self, make_finding):
        with pytest.raises(ValueError, match="source"):
            make_finding(sources=frozenset())

    @pytest.mark.parametrize("confidence", [-0.1, 1.01, float("nan")])
    def test_confidence_out_of_range_rejected(self, make_finding, confidence):
        with pytest.raises(ValueError, match="confidence"):
            make_finding(confidence=confidence)

    def test_inverted_range_rejected(self, make_finding):
        with pytest.raises(ValueError, match="line range"):
            make_finding(start_line=10, end_line=9)

    def test_zero_line_rejected(self, make_finding):
        with pytest.raises(ValueError):
            make_finding(start_line=0, end_line=0)

    def test_severity_must_be_enum(self, make_finding):
        with pytest.raises(ValueError, match="severity"):
            make_finding(severity="MAJOR")

    def test_findings_are_immutable(self, make_finding):
        f = make_finding()
        with pytest.raises(AttributeError):
            f.confidence = 0.1


class TestScores:
    def test_perfect(self):
        weights = {d: 0.2 for d in Dimension}
        scores = Scores.perfect(weights)
        assert scores.total == 100.0
        assert all(v == 100.0 for v in scores.dimensions.values())

    def test_missing_dimension_rejected(self):
        dims = {d: 100.0 for d in Dimension if d != Dimension.SECURITY}
        with pytest.raises(ValueError, match="SECURITY"):
            Scores(total=100.0, dimensions=dims, weights={d: 0.2 for d in Dimension})

    def test_to_dict_uses_names(self):
        scores = Scores.perfect({d: 0.2 for d in Dimension})
        data = scores.to_dict()
        assert data["total"] == 100.0
        assert set(data["dimensions"]) == {d.value for d in Dimension}


class TestMisc:
    def test_repo_full_name(self):
        assert RepoRef(provider="github", owner="acme", name="shop").full_name == "acme/shop"

    def test_segment_end_line_and_lines(self):
        seg = CodeSegment(file_path="a.py", content="a\nb\nc", start_line=10, line_count=3)
        assert seg.end_line == 12
        assert seg.lines() == [(10, "a"), (11, "b"), (12, "c")]

    def test_lines_changed(self):
        assert RunStats(lines_added=5, lines_deleted=3).lines_changed == 8
