"""Exceptions raised by the Rete network."""


class ReteError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ReteError, ValueError):
    """A node, test or fact source was configured incorrectly.

    Raised while the network is being assembled (or while facts are being
    loaded by the driver), never during propagation.
    """
