"""
Exception hierarchy for the threat detection engine
"""


class ThreatEngineError(Exception):
    """Base class for every error raised by the engine."""


class CatalogError(ThreatEngineError):
    """A detection rule or rule pack could not be loaded."""


class ConfigError(ThreatEngineError):
    """Configuration file or override failed validation."""


class StoreError(ThreatEngineError):
    """Reading from or writing to the profile store failed."""


class CollectionDenied(ThreatEngineError):
    """The page behavior collector was not allowed to run on a target."""


class ExtensionActionDenied(ThreatEngineError):
    """The extension platform refused to disable or uninstall an extension."""


class IconLoadError(ThreatEngineError):
    """The notifier could not load the icon attached to a notification."""


class ClassifierUnavailable(ThreatEngineError):
    """No threat classifier model is loaded."""


class FeedUpdateError(ThreatEngineError):
    """The known-phishing feed could not be downloaded."""
