"""Merge per-backend results into one deterministic report."""

import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from securechain.config.settings import AnalysisConfig, SeverityLevel
from securechain.core.normalizer import FindingNormalizer, finding_id
from securechain.models.finding import Finding, VulnerabilityCategory
from securechain.models.identity import BackendIdentity
from securechain.models.job import AnalysisJob
from securechain.models.report import CoverageEntry, Report
from securechain.models.results import BackendTaskResult

logger = logging.getLogger(__name__)

SEVERITY_PENALTY: Mapping[SeverityLevel, int] = MappingProxyType(
    {
        SeverityLevel.CRITICAL: 25,
        SeverityLevel.HIGH: 12,
        SeverityLevel.MEDIUM: 5,
        SeverityLevel.LOW: 2,
        SeverityLevel.INFORMATIONAL: 0,
    }
)

MAX_SCORE = 100

RECOMMENDATIONS: Mapping[VulnerabilityCategory, str] = MappingProxyType(
    {
        VulnerabilityCategory.REENTRANCY: (
            "Apply checks-effects-interactions and guard external calls with a reentrancy lock."
        ),
        VulnerabilityCategory.ACCESS_CONTROL: (
            "Restrict privileged functions with explicit role or ownership checks."
        ),
        VulnerabilityCategory.INTEGER_OVERFLOW: (
            "Use checked arithmetic (Solidity 0.8+ or a safe math library) for all balances."
        ),
        VulnerabilityCategory.PRICE_MANIPULATION: (
            "Read prices from a manipulation-resistant oracle such as a TWAP, not spot reserves."
        ),
        VulnerabilityCategory.UNCHECKED_CALL: (
            "Check the return value of every low-level call and token transfer."
        ),
        VulnerabilityCategory.DOS: (
            "Bound loops and avoid push payments that a single recipient can block."
        ),
        VulnerabilityCategory.TIMESTAMP_DEPENDENCE: (
            "Do not rely on block timestamps for critical decisions or randomness."
        ),
        VulnerabilityCategory.RANDOMNESS: (
            "Source randomness from a verifiable random function instead of block data."
        ),
        VulnerabilityCategory.CENTRALIZATION: (
            "Put privileged operations behind a multisig or timelock."
        ),
        VulnerabilityCategory.OTHER: "Review the remaining findings manually before deployment.",
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def security_score(findings: Sequence[Finding]) -> int:
    """100 minus the severity penalty of every finding, floored at 0."""
    penalty = sum(SEVERITY_PENALTY[f.severity] for f in findings)
    return max(0, MAX_SCORE - penalty)


def recommendations(findings: Sequence[Finding]) -> Tuple[str, ...]:
    """One remediation per category, in the order the findings are reported."""
    categories = dict.fromkeys(f.category for f in findings)
    return tuple(RECOMMENDATIONS[category] for category in categories)


def combine_confidence(confidences: Sequence[float]) -> float:
    """Independent-evidence combination: ``1 - prod(1 - c)``."""
    remaining = 1.0
    for c in sorted(confidences):
        remaining *= 1.0 - c
    return min(1.0, 1.0 - remaining)


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


def _specificity(finding: Finding):
    """Narrowest location first, function-attributed before anonymous."""
    narrowest = min(
        loc.span if loc.has_lines else float("inf") for loc in finding.locations
    )
    has_function = any(loc.function for loc in finding.locations)
    return (narrowest, not has_function, finding.sources[0].key, finding.description)


def _overlapping(a: Finding, b: Finding) -> bool:
    return a.category == b.category and any(
        la.overlaps(lb) for la in a.locations for lb in b.locations
    )


class Aggregator:
    """Deduplicates normalized findings and computes the report.

    The output depends only on the multiset of completed results, never
    on the order backends finished in.
    """

    def __init__(
        self,
        normalizer: FindingNormalizer,
        config: Optional[AnalysisConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.normalizer = normalizer
        self.config = config or AnalysisConfig()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def aggregate(
        self,
        job: AnalysisJob,
        results: Mapping[BackendIdentity, BackendTaskResult],
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> Report:
        """Build the report for a job.

        Args:
            job: The job the results belong to
            results: Terminal result per backend; missing backends are
                recorded as skipped
            started_at: When the job started; defaults to now
            completed_at: When the last backend finished; defaults to now

        Returns:
            Immutable report
        """
        candidates = self._candidates(job, results)
        merged = self.merge(candidates)

        if self.config.withhold_score_without_coverage and not any(
            r.succeeded for r in results.values()
        ):
            score = None
        else:
            score = security_score(merged)

        kept = [
            f
            for f in merged
            if f.confidence >= self.config.min_confidence
            and f.severity in self.config.severity_filters
        ]
        kept.sort(key=lambda f: f.sort_key)

        coverage = {}
        for identity in list(job.backends) + sorted(set(results) - set(job.backends)):
            result = results.get(identity) or BackendTaskResult.skipped("no result recorded")
            coverage[identity.key] = CoverageEntry.from_result(result)

        logger.info(
            "event=aggregated job=%s candidates=%d merged=%d kept=%d score=%s",
            job.id,
            len(candidates),
            len(merged),
            len(kept),
            score,
        )
        generated_at = self.now()
        return Report(
            job_id=job.id,
            contract_name=job.artifact.name,
            platform=job.artifact.platform,
            artifact_fingerprint=job.artifact.fingerprint,
            findings=tuple(kept),
            security_score=score,
            backend_coverage=coverage,
            filtered_count=len(merged) - len(kept),
            recommendations=recommendations(kept),
            started_at=started_at or generated_at,
            completed_at=completed_at or generated_at,
            generated_at=generated_at,
        )

    def _candidates(
        self,
        job: AnalysisJob,
        results: Mapping[BackendIdentity, BackendTaskResult],
    ) -> List[Finding]:
        line_count = job.artifact.line_count
        candidates = [
            self.normalizer.normalize(identity, raw, line_count)
            for identity, result in results.items()
            if result.succeeded
            for raw in result.findings
        ]
        candidates.sort(
            key=lambda f: (
                f.category.value,
                [loc.sort_key for loc in f.locations],
                f.sources[0].key,
                -f.severity.rank,
                f.confidence,
                f.title,
                f.description,
            )
        )
        return candidates

    def merge(self, candidates: Sequence[Finding]) -> List[Finding]:
        """Collapse findings of the same category with overlapping locations.

        Grouping is transitive: if A overlaps B and B overlaps C, all
        three merge even when A and C do not overlap.
        """
        groups = _DisjointSet(len(candidates))
        for i in range(len(candidates)):
            for j in range(i + 1, len(candidates)):
                if _overlapping(candidates[i], candidates[j]):
                    groups.union(i, j)

        classes: Dict[int, List[Finding]] = {}
        for i, finding in enumerate(candidates):
            classes.setdefault(groups.find(i), []).append(finding)

        return [self._merge_class(members) for members in classes.values()]

    def _merge_class(self, members: List[Finding]) -> Finding:
        members = sorted(members, key=_specificity)
        lead = members[0]

        per_backend: Dict[BackendIdentity, float] = {}
        for f in members:
            for source in f.sources:
                per_backend[source] = max(per_backend.get(source, 0.0), f.confidence)
        if len(per_backend) > 1:
            confidence = combine_confidence(list(per_backend.values()))
        else:
            confidence = next(iter(per_backend.values()))

        locations = tuple(
            sorted({loc for f in members for loc in f.locations}, key=lambda loc: loc.sort_key)
        )
        descriptions = list(dict.fromkeys(f.description for f in members if f.description))

        return Finding(
            id=finding_id(lead.category, locations),
            title=lead.title,
            category=lead.category,
            severity=max((f.severity for f in members), key=lambda s: s.rank),
            confidence=round(confidence, 6),
            locations=locations,
            sources=tuple(per_backend),
            description="\n\n".join(descriptions),
            detectors=tuple(sorted({d for f in members for d in f.detectors})),
        )
