"""Package detectors.

Three tool-backed detectors (vulnerabilities, static analysis, secrets) read
an extracted package tree; metadata analysis works on resolved metadata only.
"""

from npmsentinel.engines.scanner.detectors.base import Detector
from npmsentinel.engines.scanner.detectors.metadata import analyze_metadata
from npmsentinel.engines.scanner.detectors.secrets import SecretsDetector
from npmsentinel.engines.scanner.detectors.static_analysis import StaticAnalysisDetector
from npmsentinel.engines.scanner.detectors.vulnerabilities import VulnerabilityDetector

__all__ = [
    "Detector",
    "SecretsDetector",
    "StaticAnalysisDetector",
    "VulnerabilityDetector",
    "analyze_metadata",
]
