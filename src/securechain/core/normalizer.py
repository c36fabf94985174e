"""Map backend-native findings onto the canonical taxonomy.

All lookup tables are built once at import time and exposed read-only.
Severity lookup is per backend with a generic fallback; an unknown
severity string becomes ``informational`` and halves the confidence.
Category resolution tries, in order: the backend's detector table, the
backend's own category label, then keyword rules over title and
description. Nothing matched means ``other``.
"""

import re
from hashlib import sha256
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Pattern, Sequence, Tuple

from securechain.config.settings import BackendConfig, BackendKind, SeverityLevel
from securechain.models.finding import (
    Finding,
    Location,
    RawFinding,
    RawLocation,
    VulnerabilityCategory,
)
from securechain.models.identity import BackendIdentity

UNMAPPED_SEVERITY_PENALTY = 0.5

Category = VulnerabilityCategory

GENERIC_SEVERITY = MappingProxyType(
    {
        "critical": SeverityLevel.CRITICAL,
        "high": SeverityLevel.HIGH,
        "medium": SeverityLevel.MEDIUM,
        "warning": SeverityLevel.MEDIUM,
        "low": SeverityLevel.LOW,
        "info": SeverityLevel.INFORMATIONAL,
        "informational": SeverityLevel.INFORMATIONAL,
        "note": SeverityLevel.INFORMATIONAL,
    }
)

SEVERITY_TABLES: Mapping[str, Mapping[str, SeverityLevel]] = MappingProxyType(
    {
        "slither": MappingProxyType(
            {
                "high": SeverityLevel.HIGH,
                "medium": SeverityLevel.MEDIUM,
                "low": SeverityLevel.LOW,
                "informational": SeverityLevel.INFORMATIONAL,
                "optimization": SeverityLevel.INFORMATIONAL,
            }
        ),
        "mythril": MappingProxyType(
            {
                "high": SeverityLevel.HIGH,
                "medium": SeverityLevel.MEDIUM,
                "low": SeverityLevel.LOW,
            }
        ),
        "echidna": MappingProxyType(
            {
                "failed": SeverityLevel.HIGH,
                "assertion": SeverityLevel.HIGH,
                "property": SeverityLevel.HIGH,
            }
        ),
    }
)

DETECTOR_TABLES: Mapping[str, Mapping[str, VulnerabilityCategory]] = MappingProxyType(
    {
        "slither": MappingProxyType(
            {
                "reentrancy-eth": Category.REENTRANCY,
                "reentrancy-no-eth": Category.REENTRANCY,
                "reentrancy-benign": Category.REENTRANCY,
                "reentrancy-events": Category.REENTRANCY,
                "reentrancy-unlimited-gas": Category.REENTRANCY,
                "unprotected-upgrade": Category.ACCESS_CONTROL,
                "suicidal": Category.ACCESS_CONTROL,
                "arbitrary-send": Category.ACCESS_CONTROL,
                "arbitrary-send-eth": Category.ACCESS_CONTROL,
                "controlled-delegatecall": Category.ACCESS_CONTROL,
                "tx-origin": Category.ACCESS_CONTROL,
                "unchecked-transfer": Category.UNCHECKED_CALL,
                "unchecked-lowlevel": Category.UNCHECKED_CALL,
                "unchecked-send": Category.UNCHECKED_CALL,
                "low-level-calls": Category.UNCHECKED_CALL,
                "timestamp": Category.TIMESTAMP_DEPENDENCE,
                "weak-prng": Category.RANDOMNESS,
                "divide-before-multiply": Category.INTEGER_OVERFLOW,
                "delegatecall-loop": Category.DOS,
                "msg-value-loop": Category.DOS,
                "calls-loop": Category.DOS,
                "locked-ether": Category.DOS,
            }
        ),
        "mythril": MappingProxyType(
            {
                "swc-101": Category.INTEGER_OVERFLOW,
                "swc-104": Category.UNCHECKED_CALL,
                "swc-105": Category.ACCESS_CONTROL,
                "swc-106": Category.ACCESS_CONTROL,
                "swc-107": Category.REENTRANCY,
                "swc-112": Category.ACCESS_CONTROL,
                "swc-113": Category.DOS,
                "swc-115": Category.ACCESS_CONTROL,
                "swc-116": Category.TIMESTAMP_DEPENDENCE,
                "swc-120": Category.RANDOMNESS,
                "swc-124": Category.ACCESS_CONTROL,
                "swc-128": Category.DOS,
            }
        ),
        "echidna": MappingProxyType(
            {
                "balance": Category.ACCESS_CONTROL,
                "theft": Category.ACCESS_CONTROL,
                "reentrancy": Category.REENTRANCY,
                "overflow": Category.INTEGER_OVERFLOW,
                "underflow": Category.INTEGER_OVERFLOW,
                "access": Category.ACCESS_CONTROL,
                "dos": Category.DOS,
            }
        ),
    }
)

# Priority ordered; the first matching rule wins.
CATEGORY_RULES: Tuple[Tuple[VulnerabilityCategory, Pattern[str]], ...] = tuple(
    (category, re.compile(pattern, re.IGNORECASE))
    for category, pattern in (
        (Category.REENTRANCY, r"re-?entran|swc-107"),
        (
            Category.PRICE_MANIPULATION,
            r"oracle|price[- ]manipulat|flash[- ]?loan|spot price|twap|sandwich",
        ),
        (
            Category.ACCESS_CONTROL,
            r"access[- _]?control|tx\.?origin|unprotected|unauthori[sz]ed|authori[sz]ation"
            r"|only ?owner|missing (modifier|permission)|privilege escalation"
            r"|selfdestruct|suicidal|delegatecall|capabilit",
        ),
        (Category.INTEGER_OVERFLOW, r"overflow|underflow|arithmetic|divide[- ]before[- ]multiply"),
        (
            Category.UNCHECKED_CALL,
            r"unchecked|return value|low[- ]level call|unhandled exception|call\.value",
        ),
        (
            Category.TIMESTAMP_DEPENDENCE,
            r"timestamp|block\.number as time|time[- ]manipulat",
        ),
        (Category.RANDOMNESS, r"random|prng|blockhash|predictable"),
        (
            Category.DOS,
            r"denial[- ]of[- ]service|\bdos\b|gas limit|unbounded (loop|array)|griefing|out of gas",
        ),
        (
            Category.CENTRALIZATION,
            r"centrali[sz]|admin (key|privilege)|owner can|single point|rug ?pull|trusted (owner|admin)",
        ),
    )
)

DEFAULT_CONFIDENCE: Mapping[BackendKind, float] = MappingProxyType(
    {
        BackendKind.STATIC: 0.5,
        BackendKind.SYMBOLIC: 0.7,
        BackendKind.FUZZER: 0.8,
        BackendKind.AI: 0.3,
    }
)

REPRODUCED_CONFIDENCE = 1.0


def finding_id(category: VulnerabilityCategory, locations: Iterable[Location]) -> str:
    """Deterministic identifier derived from category and locations."""
    parts = [category.value] + [str(loc.sort_key) for loc in locations]
    return sha256("|".join(parts).encode()).hexdigest()[:16]


def categorize(text_fields: Sequence[Optional[str]]) -> VulnerabilityCategory:
    """Apply keyword rules across fields in priority order."""
    text = " ".join(t for t in text_fields if t)
    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return category
    return Category.OTHER


class FindingNormalizer:
    """Turns :class:`RawFinding` objects into canonical :class:`Finding` objects."""

    def __init__(self, backend_configs: Optional[Mapping[str, BackendConfig]] = None):
        self._configs = MappingProxyType(dict(backend_configs or {}))

    def normalize(
        self,
        backend: BackendIdentity,
        raw: RawFinding,
        line_count: int = 1,
    ) -> Finding:
        """Normalize one raw finding.

        Args:
            backend: Backend that reported the finding
            raw: Backend-native finding
            line_count: Lines in the artifact, for contract-wide findings

        Returns:
            Finding attributed to ``backend`` alone
        """
        config = self._configs.get(backend.name, BackendConfig())
        severity, mapped = self.map_severity(backend.name, raw.severity)
        category = self.map_category(backend.name, raw)
        confidence = self.confidence_for(config, raw)
        if not mapped:
            confidence *= UNMAPPED_SEVERITY_PENALTY
        locations = normalize_locations(raw.locations, line_count)

        return Finding(
            id=finding_id(category, locations),
            title=raw.title,
            category=category,
            severity=severity,
            confidence=round(min(1.0, max(0.0, confidence)), 6),
            locations=locations,
            sources=(backend,),
            description=raw.description or raw.title,
            detectors=(raw.detector,) if raw.detector else (),
        )

    def map_severity(self, backend_name: str, value: Optional[str]) -> Tuple[SeverityLevel, bool]:
        """Look up a severity string.

        Returns:
            Tuple of (severity, whether the value was recognised)
        """
        if not value:
            return SeverityLevel.INFORMATIONAL, False
        key = value.strip().lower()
        table = SEVERITY_TABLES.get(backend_name, GENERIC_SEVERITY)
        severity = table.get(key) or GENERIC_SEVERITY.get(key)
        if severity is None:
            return SeverityLevel.INFORMATIONAL, False
        return severity, True

    def map_category(self, backend_name: str, raw: RawFinding) -> VulnerabilityCategory:
        detectors = DETECTOR_TABLES.get(backend_name, {})
        if raw.detector:
            category = detectors.get(raw.detector.strip().lower())
            if category is not None:
                return category
        if raw.category:
            try:
                return VulnerabilityCategory(raw.category.strip().lower())
            except ValueError:
                pass
        return categorize([raw.detector, raw.category, raw.title, raw.description])

    def confidence_for(self, config: BackendConfig, raw: RawFinding) -> float:
        if raw.confidence is not None:
            return raw.confidence
        if config.kind is BackendKind.FUZZER and raw.trace:
            return REPRODUCED_CONFIDENCE
        if config.default_confidence is not None:
            return config.default_confidence
        return DEFAULT_CONFIDENCE[config.kind]


def function_name(signature: Optional[str]) -> Optional[str]:
    """Bare function name: ``Vault.withdraw(uint256)`` becomes ``withdraw``."""
    if not signature:
        return None
    name = signature.split("(", 1)[0].strip()
    return name.rsplit(".", 1)[-1] or None


def normalize_locations(raw_locations: Sequence[RawLocation], line_count: int) -> Tuple[Location, ...]:
    """Convert raw locations into sorted, unique locations.

    A location naming only a function keeps no line range. A location
    with neither lines nor a function covers the whole file, and so does
    a finding with no location at all.
    """
    line_count = max(1, line_count)
    whole_file = Location(start_line=1, end_line=line_count)
    if not raw_locations:
        return (whole_file,)

    locations = set()
    for raw in raw_locations:
        function = function_name(raw.function)
        if raw.start_line is None and raw.end_line is None:
            locations.add(Location(function=function) if function else whole_file)
            continue
        start = raw.start_line if raw.start_line is not None else raw.end_line
        end = raw.end_line if raw.end_line is not None else start
        start, end = sorted((max(1, start), max(1, end)))
        locations.add(Location(start_line=start, end_line=end, function=function))
    return tuple(sorted(locations, key=lambda loc: loc.sort_key))
