"""
Exception taxonomy for meterd.

Fatal conditions derive from :class:`MeterdError`; conditions that are
recovered locally (logged, then skipped) derive from :class:`MeterdWarning`.

CHANGELOG:
- 2026-10-19: Initial creation
"""


class MeterdError(Exception):
    """Base class for conditions that stop the component raising them."""


class ConfigurationError(MeterdError):
    """Bad or missing settings. Fatal at startup."""


class TransportError(MeterdError):
    """The serial device could not be opened or read. Stops ingestion."""


class TransportInterrupted(MeterdError):
    """A read was interrupted or timed out before a telegram completed.

    Not fatal: the ingestion loop checks its shutdown flag and retries.
    """


class StorageError(MeterdError):
    """A series database could not be opened, created or queried."""


class MeterdWarning(Warning):
    """Base class for conditions that are logged and otherwise ignored."""


class ParseWarning(MeterdWarning):
    """A single telegram line was malformed and has been skipped."""


class StorageWriteWarning(MeterdWarning):
    """Recording a point failed; aggregation state advances regardless."""
