"""Migration subpackage — protocol upgrades and sovereign exit."""

from trustbond.migration.manager import MigrationManager, MigrationResult, PortableIdentity

__all__ = ["MigrationManager", "MigrationResult", "PortableIdentity"]
