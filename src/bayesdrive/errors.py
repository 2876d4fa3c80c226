class BayesDriveError(Exception):
    """Base class for errors raised by bayesdrive."""


class FormulaError(BayesDriveError, ValueError):
    """Malformed model formula or prior, or a model that does not match its data."""


class DagError(BayesDriveError, ValueError):
    """Malformed or cyclic causal graph, or a query on unknown nodes."""


class ConvergenceError(BayesDriveError, RuntimeError):
    """The posterior mode could not be located or its curvature is not usable."""
