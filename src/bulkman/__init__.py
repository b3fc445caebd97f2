"""bulkman - bulk operation orchestration against a session-based management API."""

from .bulk.models import (
    BatchPolicy,
    BulkOperationResult,
    ItemError,
    ItemOutcome,
    JobStatus,
    PartialSuccessMode,
    PartialSuccessPolicy,
    ProcessStatus,
    RunOptions,
)
from .bulk.operations import OperationKind
from .bulk.orchestrator import BulkOrchestrator
from .bulk.registry import ProcessRegistry
from .session.manager import ResilientSessionManager
from .session.models import ConnectionHealth


# Version will be set by build system
def _get_version():
    """Get the version from package metadata or pyproject.toml."""
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version("bulkman")
    except PackageNotFoundError:
        # Fallback for development/editable installs
        import re
        from pathlib import Path

        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        if not pyproject_path.exists():
            raise RuntimeError(f"Could not find pyproject.toml at {pyproject_path}")

        with open(pyproject_path, "r", encoding="utf-8") as f:
            content = f.read()
            # Look for version = "..." in the [tool.poetry] section
            version_match = re.search(r'version\s*=\s*["\']([^"\']+)["\']', content)
            if not version_match:
                raise RuntimeError("Could not find version in pyproject.toml")
            return version_match.group(1)


__version__ = _get_version()

__all__ = [
    "__version__",
    # Orchestration
    "BulkOrchestrator",
    "OperationKind",
    "RunOptions",
    "ProcessRegistry",
    "ProcessStatus",
    "JobStatus",
    # Results and policies
    "BulkOperationResult",
    "ItemOutcome",
    "ItemError",
    "BatchPolicy",
    "PartialSuccessMode",
    "PartialSuccessPolicy",
    # Remote session
    "ResilientSessionManager",
    "ConnectionHealth",
]
