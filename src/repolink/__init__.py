"""
repolink - bidirectional project sync

Keeps locally tracked GitHub repo links consistent with a remote backend.
"""

__version__ = "0.1.0"

# Re-export core models for convenience
from repolink.core.config.models import RepoLinkConfig
from repolink.core.sync.models import CanonicalProject, SyncStatus

__all__ = ["RepoLinkConfig", "CanonicalProject", "SyncStatus", "__version__"]
