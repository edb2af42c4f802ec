"""
Exception hierarchy for the provisioner.

Expected alternate paths (an element that is not there, a form that was
already submitted) are never raised; they travel as data. Only genuine
faults and configuration problems use these exceptions.
"""


class ProvisionError(Exception):
    """Base class for all provisioner errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(ProvisionError):
    """Invalid configuration file or command line values."""


class BrowserFault(ProvisionError):
    """The browser or page is no longer usable (crash, closed target, launch failure)."""


class ServiceUnreachable(BrowserFault):
    """The target service could not be reached at all."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        message = f"Service unreachable: {url}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class StepTimeout(ProvisionError):
    """A page operation did not complete in time.

    Raised by the page adapter only; the executor turns it into a failed
    or skipped outcome.
    """


class UnknownLocatorError(KeyError):
    """A step referenced a logical locator that is not registered."""


class KeyGenerationError(ProvisionError):
    """ssh-keygen failed or the public key could not be read."""
