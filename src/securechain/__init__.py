"""SecureChain - smart contract vulnerability analysis orchestrator.

Runs a configurable set of analysis backends (static analyzers, fuzzers,
AI exploit-hypothesis generators) against a contract artifact and merges
their findings into one deterministic vulnerability report.
"""

__version__ = "0.1.0"
__author__ = "SecureChain"

from securechain.core.pipeline import AnalysisPipeline

__all__ = ["AnalysisPipeline"]
