"""ferrocache: cache orchestration for Rust CI jobs.

Restores and saves the toolchain's registry index, downloaded packages,
fetched git dependencies and build artifacts across isolated CI runs:

  - deterministic, cross-platform cache keys
  - content fingerprints that ignore timestamps and permissions
  - restore provenance handed from the main phase to the post phase
  - create-only saves that tolerate concurrent writers
"""

__version__ = "0.1.0"
__description__ = "Dependency and build-artifact caching for Rust CI jobs"

from ferrocache.core.orchestrator import CacheOrchestrator
from ferrocache.config import CacheSettings, ConfigurationError, load_settings

__all__ = [
    "CacheOrchestrator",
    "CacheSettings",
    "ConfigurationError",
    "load_settings",
    "__version__",
]
