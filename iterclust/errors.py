"""Exception and warning types raised by iterclust.

ConfigError and DimensionError are fatal and raised immediately.
CollaboratorError wraps failures of the reduction, partition and DE
collaborators; the split engine confines it to the failing branch.
ConvergenceWarning is emitted when an iterative loop hits its cap and a
best-effort result is returned.
"""


class IterClustError(Exception):
    """Base class for iterclust errors."""


class ConfigError(IterClustError, ValueError):
    """Invalid configuration value (e.g. a DEParam threshold out of range)."""


class LabelIndexError(IterClustError, IndexError):
    """A row/column/cell label could not be resolved to a position."""


class DimensionError(IterClustError, ValueError):
    """Mismatched matrix, label or value shapes."""


class CollaboratorError(IterClustError, RuntimeError):
    """Failure inside a reduction, partition or DE-test collaborator."""


class ConvergenceWarning(UserWarning):
    """An iterative loop stopped at its iteration cap without converging."""
