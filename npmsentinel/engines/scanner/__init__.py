"""Scanner engine — sandboxed detector runs over discovered packages."""

from npmsentinel.engines.scanner.coordinator import ScanBatchResult, ScanCoordinator
from npmsentinel.engines.scanner.pipeline import ScanPipeline
from npmsentinel.engines.scanner.sandbox import PackageSandbox

__all__ = [
    "PackageSandbox",
    "ScanBatchResult",
    "ScanCoordinator",
    "ScanPipeline",
]
