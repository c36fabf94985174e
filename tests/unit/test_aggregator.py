"""Tests for Aggregator deduplication, scoring and ordering."""

import itertools
from datetime import timedelta

import pytest

from securechain.config.settings import (
    AnalysisConfig,
    BackendConfig,
    BackendKind,
    SeverityLevel,
)
from securechain.core.aggregator import (
    RECOMMENDATIONS,
    Aggregator,
    combine_confidence,
    security_score,
)
from securechain.core.normalizer import FindingNormalizer
from securechain.errors import ErrorKind
from securechain.models.finding import RawFinding, VulnerabilityCategory
from securechain.models.identity import BackendIdentity
from securechain.models.job import AnalysisJob
from securechain.models.results import BackendTaskResult, TaskStatus

from tests.fakes import FIXED_TIME, ai_reentrancy, static_reentrancy

SLITHER = BackendIdentity(name="slither", version="1.0")
MYTHRIL = BackendIdentity(name="mythril", version="1.0")
AI = BackendIdentity(name="ai-auditor", version="1.0")


def aggregator_normalizer() -> FindingNormalizer:
    return FindingNormalizer(
        {
            "slither": BackendConfig(kind=BackendKind.STATIC),
            "mythril": BackendConfig(kind=BackendKind.SYMBOLIC),
            "ai-auditor": BackendConfig(kind=BackendKind.AI),
        }
    )


@pytest.fixture
def aggregator():
    return Aggregator(aggregator_normalizer(), AnalysisConfig(), clock=lambda: FIXED_TIME)


@pytest.fixture
def job(artifact):
    return AnalysisJob(artifact=artifact, backends=(SLITHER, MYTHRIL, AI))


def unchecked_send() -> RawFinding:
    return RawFinding(
        title="Unchecked transfer in sweep",
        severity="Medium",
        detector="unchecked-transfer",
        confidence=0.9,
        locations=["sweep:21-23"],
    )


class TestDeduplication:
    """Test merging of corroborating findings."""

    def test_overlapping_findings_merge(self, aggregator, job):
        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.success([static_reentrancy()]),
                AI: BackendTaskResult.success([ai_reentrancy()]),
                MYTHRIL: BackendTaskResult.success([]),
            },
        )

        assert len(report.findings) == 1
        finding = report.findings[0]
        assert finding.category is VulnerabilityCategory.REENTRANCY
        assert finding.severity is SeverityLevel.CRITICAL
        assert set(finding.sources) == {SLITHER, AI}
        assert finding.confidence > 0.5
        assert finding.confidence > 0.3
        assert report.security_score == 75

    def test_different_categories_do_not_merge(self, aggregator, job):
        access = RawFinding(
            title="Missing access control on withdraw",
            severity="high",
            category="access-control",
            confidence=0.8,
            locations=["withdraw:10-15"],
        )
        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.success([static_reentrancy()]),
                AI: BackendTaskResult.success([access]),
            },
        )

        assert {f.category for f in report.findings} == {
            VulnerabilityCategory.REENTRANCY,
            VulnerabilityCategory.ACCESS_CONTROL,
        }

    def test_merging_is_transitive(self, aggregator):
        merged = aggregator.merge(
            [
                aggregator.normalizer.normalize(SLITHER, _reentrancy_at("1-5")),
                aggregator.normalizer.normalize(MYTHRIL, _reentrancy_at("5-9")),
                aggregator.normalizer.normalize(AI, _reentrancy_at("9-12")),
            ]
        )

        assert len(merged) == 1
        assert len(merged[0].locations) == 3

    def test_same_backend_twice_does_not_inflate_confidence(self, aggregator):
        merged = aggregator.merge(
            [
                aggregator.normalizer.normalize(SLITHER, _reentrancy_at("10-12", 0.6)),
                aggregator.normalizer.normalize(SLITHER, _reentrancy_at("11-13", 0.4)),
            ]
        )

        assert len(merged) == 1
        assert merged[0].confidence == 0.6
        assert merged[0].sources == (SLITHER,)

    def test_most_specific_description_first(self, aggregator, job):
        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.success([static_reentrancy()]),
                AI: BackendTaskResult.success([ai_reentrancy()]),
            },
        )

        assert report.findings[0].description.startswith("Attacker re-enters withdraw")

    def test_function_only_findings_in_different_functions_stay_apart(self, job):
        aggregator = Aggregator(
            aggregator_normalizer(), AnalysisConfig(min_confidence=0), clock=lambda: FIXED_TIME
        )
        withdraw = RawFinding(
            title="Reentrant withdraw",
            severity="high",
            category="reentrancy",
            locations=["withdraw"],
        )

        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.success([_reentrancy_at("deposit:7-9")]),
                AI: BackendTaskResult.success([withdraw]),
            },
        )

        assert len(report.findings) == 2
        assert {str(f.primary_location) for f in report.findings} == {"deposit:7-9", "withdraw"}

    def test_function_only_finding_merges_with_same_function(self, aggregator):
        withdraw = RawFinding(title="Reentrant withdraw", category="reentrancy", locations=["withdraw"])

        merged = aggregator.merge(
            [
                aggregator.normalizer.normalize(SLITHER, static_reentrancy()),
                aggregator.normalizer.normalize(AI, withdraw),
            ]
        )

        assert len(merged) == 1
        assert merged[0].sources == (AI, SLITHER)


class TestConfidence:
    def test_combination_exceeds_each_input(self):
        combined = combine_confidence([0.5, 0.3])

        assert combined == pytest.approx(0.65)
        assert combined > 0.5

    def test_combination_capped(self):
        assert combine_confidence([1.0, 0.9]) == 1.0


class TestScoring:
    """Test the security score."""

    def test_penalties(self, aggregator):
        findings = [
            aggregator.normalizer.normalize(SLITHER, RawFinding(title="x", severity=s))
            for s in ("high", "medium", "low", "informational")
        ]

        assert security_score(findings) == 100 - 12 - 5 - 2

    def test_floor_at_zero(self, aggregator):
        critical = aggregator.normalizer.normalize(AI, RawFinding(title="x", severity="critical"))

        assert security_score([critical] * 5) == 0

    def test_all_failed_scores_100_with_warning(self, aggregator, job):
        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.failed(ErrorKind.TRANSIENT, 3),
                MYTHRIL: BackendTaskResult.timed_out(),
                AI: BackendTaskResult.failed(ErrorKind.FATAL, 1, "bad key"),
            },
        )

        assert report.findings == ()
        assert report.security_score == 100
        assert report.coverage_warning is not None
        assert not report.has_full_coverage

    def test_score_withheld_without_coverage(self, job):
        aggregator = Aggregator(
            FindingNormalizer(),
            AnalysisConfig(withhold_score_without_coverage=True),
            clock=lambda: FIXED_TIME,
        )

        report = aggregator.aggregate(job, {SLITHER: BackendTaskResult.timed_out()})

        assert report.security_score is None
        assert "not evidence" in report.coverage_warning

    def test_score_counts_filtered_findings(self, aggregator, job):
        low_confidence = RawFinding(
            title="Possible reentrancy", severity="critical", confidence=0.1, locations=["sweep:21"]
        )

        report = aggregator.aggregate(job, {AI: BackendTaskResult.success([low_confidence])})

        assert report.findings == ()
        assert report.filtered_count == 1
        assert report.security_score == 75


class TestRecommendations:
    def test_one_per_retained_category(self, aggregator, job):
        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.success([unchecked_send(), static_reentrancy()]),
                AI: BackendTaskResult.success([ai_reentrancy()]),
            },
        )

        assert report.recommendations == (
            RECOMMENDATIONS[VulnerabilityCategory.REENTRANCY],
            RECOMMENDATIONS[VulnerabilityCategory.UNCHECKED_CALL],
        )

    def test_filtered_findings_get_none(self, aggregator, job):
        report = aggregator.aggregate(job, {AI: BackendTaskResult.success([ai_reentrancy()])})

        assert report.recommendations == ()

    def test_every_category_covered(self):
        assert set(RECOMMENDATIONS) == set(VulnerabilityCategory)


class TestTimestamps:
    def test_default_to_clock(self, aggregator, job):
        report = aggregator.aggregate(job, {})

        assert report.started_at == report.completed_at == report.generated_at == FIXED_TIME
        assert report.duration == 0

    def test_explicit_window(self, aggregator, job):
        started = FIXED_TIME - timedelta(seconds=30)

        report = aggregator.aggregate(job, {}, started_at=started, completed_at=FIXED_TIME)

        assert report.duration == 30
        assert report.generated_at == FIXED_TIME


class TestFiltering:
    def test_min_confidence(self, aggregator, job):
        report = aggregator.aggregate(
            job, {AI: BackendTaskResult.success([ai_reentrancy()])}
        )

        assert report.findings == ()

    def test_severity_filters(self, job):
        aggregator = Aggregator(
            FindingNormalizer(),
            AnalysisConfig(severity_filters=frozenset({SeverityLevel.CRITICAL})),
            clock=lambda: FIXED_TIME,
        )

        report = aggregator.aggregate(job, {SLITHER: BackendTaskResult.success([unchecked_send()])})

        assert report.findings == ()


class TestDeterminism:
    """Test that report content does not depend on completion order."""

    def test_ordering(self, aggregator, job):
        report = aggregator.aggregate(
            job,
            {
                SLITHER: BackendTaskResult.success([unchecked_send(), static_reentrancy()]),
                AI: BackendTaskResult.success([ai_reentrancy()]),
            },
        )

        severities = [f.severity.rank for f in report.findings]
        assert severities == sorted(severities, reverse=True)
        assert report.findings[0].category is VulnerabilityCategory.REENTRANCY

    def test_permutations_give_identical_reports(self, aggregator, job):
        results = [
            (SLITHER, BackendTaskResult.success([unchecked_send(), static_reentrancy()])),
            (MYTHRIL, BackendTaskResult.success([_reentrancy_at("12-14", 0.7)])),
            (AI, BackendTaskResult.success([ai_reentrancy()])),
        ]

        dumps = {
            aggregator.aggregate(job, dict(order)).model_dump_json()
            for order in itertools.permutations(results)
        }

        assert len(dumps) == 1

    def test_coverage_in_request_order(self, aggregator, job):
        report = aggregator.aggregate(
            job,
            {
                AI: BackendTaskResult.success([]),
                SLITHER: BackendTaskResult.success([]),
            },
        )

        assert list(report.backend_coverage) == [SLITHER.key, MYTHRIL.key, AI.key]
        assert report.backend_coverage[MYTHRIL.key].status is TaskStatus.SKIPPED


def _reentrancy_at(lines: str, confidence: float = 0.6) -> RawFinding:
    return RawFinding(
        title="Reentrancy",
        severity="high",
        detector="reentrancy-eth",
        confidence=confidence,
        locations=[lines],
    )
