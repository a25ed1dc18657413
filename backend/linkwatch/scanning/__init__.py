"""Link scanner integration helpers exposed to the application."""

from linkwatch.scanning.api import router
from linkwatch.scanning.domain.container import configure, configure_postgres
from linkwatch.scanning.workers.runner import spawn_workers

__all__ = ["router", "configure", "configure_postgres", "spawn_workers"]
