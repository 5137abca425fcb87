"""
Error taxonomy for the HU engine.

None of these is fatal to a whole run: reference misses score 0, malformed
sites are dropped from the metrics they cannot support, and statistics with
too few pairs report None.
"""


class ReferenceDataError(KeyError):
    """A habitat type or condition is missing from a reference table."""
    
    def __init__(self, table: str, key):
        self.table = table
        self.key = key
        super().__init__(f"{table}: no entry for {key!r}")
    
    def __str__(self) -> str:
        return self.args[0]


class MalformedSiteError(ValueError):
    """A site record lacks a field required by a metric."""
    
    def __init__(self, reference: str, field: str):
        self.reference = reference
        self.field = field
        super().__init__(f"Site {reference} is missing '{field}'")


class InsufficientDataError(ValueError):
    """A statistic needs more (or less degenerate) data than was supplied."""
