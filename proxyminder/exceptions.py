"""Errors raised by the supervisor, history store and management client."""


class ProxyMinderError(Exception):
    """Base class for proxyminder errors."""


class ConfigWriteError(ProxyMinderError):
    """The runtime proxy configuration could not be written."""


class SpawnError(ProxyMinderError):
    """The proxy process could not be started."""


class KillError(ProxyMinderError):
    """The proxy process could not be killed."""


class PortReclaimError(ProxyMinderError):
    """A process holding the proxy port could not be identified or terminated."""


class PersistError(ProxyMinderError):
    """The request history could not be written."""


class ManagementError(ProxyMinderError):
    """A call to the proxy management API failed."""
