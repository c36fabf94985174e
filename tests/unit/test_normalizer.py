"""Tests for FindingNormalizer."""

import pytest

from securechain.config.settings import BackendConfig, BackendKind, SeverityLevel
from securechain.core.normalizer import (
    FindingNormalizer,
    categorize,
    finding_id,
    normalize_locations,
)
from securechain.models.finding import Location, RawFinding, RawLocation, VulnerabilityCategory
from securechain.models.identity import BackendIdentity

SLITHER = BackendIdentity(name="slither", version="0.10.0")
MYTHRIL = BackendIdentity(name="mythril", version="0.24.0")
ECHIDNA = BackendIdentity(name="echidna", version="2.2.0")
AI = BackendIdentity(name="ai-auditor", version="1")


@pytest.fixture
def normalizer():
    return FindingNormalizer(
        {
            "slither": BackendConfig(kind=BackendKind.STATIC),
            "mythril": BackendConfig(kind=BackendKind.SYMBOLIC),
            "echidna": BackendConfig(kind=BackendKind.FUZZER),
            "ai-auditor": BackendConfig(kind=BackendKind.AI),
        }
    )


class TestSeverityMapping:
    """Test backend severity vocabularies."""

    def test_slither_levels(self, normalizer):
        assert normalizer.map_severity("slither", "High") == (SeverityLevel.HIGH, True)
        assert normalizer.map_severity("slither", "Optimization") == (
            SeverityLevel.INFORMATIONAL,
            True,
        )

    def test_generic_fallback(self, normalizer):
        assert normalizer.map_severity("ai-auditor", "CRITICAL") == (SeverityLevel.CRITICAL, True)
        assert normalizer.map_severity("mythril", "warning") == (SeverityLevel.MEDIUM, True)

    def test_unmapped_defaults_to_informational(self, normalizer):
        assert normalizer.map_severity("slither", "catastrophic") == (
            SeverityLevel.INFORMATIONAL,
            False,
        )
        assert normalizer.map_severity("slither", None) == (SeverityLevel.INFORMATIONAL, False)

    def test_unmapped_severity_penalizes_confidence(self, normalizer):
        raw = RawFinding(title="Something odd", severity="catastrophic", confidence=0.8)

        finding = normalizer.normalize(SLITHER, raw)

        assert finding.severity is SeverityLevel.INFORMATIONAL
        assert finding.confidence == pytest.approx(0.4)


class TestCategoryMapping:
    """Test category resolution."""

    def test_detector_table(self, normalizer):
        raw = RawFinding(title="Reentrancy in Vault.withdraw", detector="reentrancy-no-eth")

        assert normalizer.map_category("slither", raw) is VulnerabilityCategory.REENTRANCY

    def test_swc_id(self, normalizer):
        raw = RawFinding(title="State change after external call", detector="SWC-107")

        assert normalizer.map_category("mythril", raw) is VulnerabilityCategory.REENTRANCY

    def test_backend_category_label(self, normalizer):
        raw = RawFinding(title="Owner can drain funds", category="access-control")

        assert normalizer.map_category("ai-auditor", raw) is VulnerabilityCategory.ACCESS_CONTROL

    def test_keyword_rules(self):
        assert categorize(["Re-entrancy vulnerability"]) is VulnerabilityCategory.REENTRANCY
        assert categorize(["Use of tx.origin for auth"]) is VulnerabilityCategory.ACCESS_CONTROL
        assert categorize(["Integer overflow in add"]) is VulnerabilityCategory.INTEGER_OVERFLOW
        assert (
            categorize(["Flash loan oracle manipulation"])
            is VulnerabilityCategory.PRICE_MANIPULATION
        )
        assert categorize(["Return value of send is unchecked"]) is (
            VulnerabilityCategory.UNCHECKED_CALL
        )
        assert categorize(["Dangerous use of block.timestamp"]) is (
            VulnerabilityCategory.TIMESTAMP_DEPENDENCE
        )
        assert categorize(["Weak randomness from blockhash"]) is VulnerabilityCategory.RANDOMNESS
        assert categorize(["Unbounded loop hits gas limit"]) is VulnerabilityCategory.DOS

    def test_rule_priority(self):
        # Reentrancy outranks unchecked call when both match.
        text = ["Reentrancy through unchecked low-level call"]

        assert categorize(text) is VulnerabilityCategory.REENTRANCY

    def test_no_match_is_other(self):
        assert categorize(["Naming convention", None]) is VulnerabilityCategory.OTHER


class TestConfidence:
    """Test confidence defaults."""

    def test_reported_confidence_wins(self, normalizer):
        raw = RawFinding(title="Reentrancy", severity="high", confidence=0.9)

        assert normalizer.normalize(AI, raw).confidence == 0.9

    def test_kind_defaults(self, normalizer):
        raw = RawFinding(title="Reentrancy", severity="high")

        assert normalizer.normalize(SLITHER, raw).confidence == 0.5
        assert normalizer.normalize(MYTHRIL, raw).confidence == 0.7
        assert normalizer.normalize(AI, raw).confidence == 0.3

    def test_fuzzer_with_trace_is_certain(self, normalizer):
        raw = RawFinding(
            title="echidna_no_reentrancy failed",
            severity="failed",
            trace="withdraw(1) from 0x10000",
        )

        assert normalizer.normalize(ECHIDNA, raw).confidence == 1.0

    def test_configured_default_confidence(self):
        normalizer = FindingNormalizer({"slither": BackendConfig(default_confidence=0.65)})
        raw = RawFinding(title="Reentrancy", severity="high")

        assert normalizer.normalize(SLITHER, raw).confidence == 0.65


class TestLocations:
    """Test location normalization."""

    def test_no_location_is_whole_file(self):
        assert normalize_locations((), 40) == (Location(start_line=1, end_line=40),)

    def test_function_only_has_no_lines(self):
        locations = normalize_locations((RawLocation(function="withdraw"),), 40)

        assert locations == (Location(function="withdraw"),)

    def test_function_signature_reduced_to_name(self):
        raw = (
            RawLocation(function="Vault.withdraw(uint256)"),
            RawLocation(function="Vault.withdraw(uint256)", start_line=12),
        )

        assert normalize_locations(raw, 40) == (
            Location(start_line=12, end_line=12, function="withdraw"),
            Location(function="withdraw"),
        )

    def test_empty_location_is_whole_file(self):
        assert normalize_locations((RawLocation(),), 40) == (Location(start_line=1, end_line=40),)

    def test_single_line(self):
        locations = normalize_locations((RawLocation(start_line=12),), 40)

        assert locations == (Location(start_line=12, end_line=12),)

    def test_sorted_and_unique(self):
        raw = (
            RawLocation.parse("b:20-22"),
            RawLocation.parse("a:3"),
            RawLocation.parse("b:20-22"),
        )

        locations = normalize_locations(raw, 40)

        assert [str(loc) for loc in locations] == ["a:3", "b:20-22"]

    def test_normalize_uses_line_count(self, normalizer):
        raw = RawFinding(title="Centralization risk", severity="low")

        finding = normalizer.normalize(SLITHER, raw, line_count=24)

        assert finding.locations == (Location(start_line=1, end_line=24),)


class TestNormalize:
    def test_full_finding(self, normalizer):
        raw = RawFinding(
            title="Reentrancy in Vault.withdraw",
            description="External call before state update",
            severity="High",
            detector="reentrancy-eth",
            locations=["withdraw:10-15"],
        )

        finding = normalizer.normalize(SLITHER, raw)

        assert finding.category is VulnerabilityCategory.REENTRANCY
        assert finding.severity is SeverityLevel.HIGH
        assert finding.sources == (SLITHER,)
        assert finding.detectors == ("reentrancy-eth",)
        assert finding.locations == (Location(start_line=10, end_line=15, function="withdraw"),)
        assert finding.id == finding_id(finding.category, finding.locations)

    def test_description_defaults_to_title(self, normalizer):
        finding = normalizer.normalize(SLITHER, RawFinding(title="Reentrancy", severity="high"))

        assert finding.description == "Reentrancy"

    def test_finding_id_is_deterministic(self):
        locations = (Location(start_line=1, end_line=2),)

        assert finding_id(VulnerabilityCategory.DOS, locations) == finding_id(
            VulnerabilityCategory.DOS, locations
        )
        assert finding_id(VulnerabilityCategory.DOS, locations) != finding_id(
            VulnerabilityCategory.REENTRANCY, locations
        )
