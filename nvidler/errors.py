"""Exceptions raised by nvidler components."""


class NvidlerError(Exception):
    """Base class for all nvidler errors."""


class ConfigError(NvidlerError):
    """Invalid configuration value. Fatal at startup."""


class LogSinkError(NvidlerError):
    """The log file could not be rotated or opened. Fatal at startup."""


class GpuQueryError(NvidlerError):
    """The accelerator usage query failed. Aborts one cycle."""


class ContainerSourceError(NvidlerError):
    """
    The Docker daemon could not be reached.
    Fatal when raised while building the client, aborts one cycle otherwise.
    """
