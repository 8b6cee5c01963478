"""
ems-sync - Employee records sync engine

Keeps a typed local copy of a spreadsheet-backed employee register in step
with its remote web-hook endpoint.
"""

__version__ = "0.4.0"

# Re-export core models for convenience
from ems_sync.core.snapshot.models import EntityAction, EntityKind, Identity, Role, Snapshot

__all__ = ["EntityAction", "EntityKind", "Identity", "Role", "Snapshot", "__version__"]
