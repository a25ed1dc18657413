"""Link scanner worker exports."""

from .link_scanner import LinkScannerWorker

__all__ = [
	"LinkScannerWorker",
]
