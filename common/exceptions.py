"""Exception hierarchy for the bias engine."""


class BiasEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(BiasEngineError, ValueError):
    """Malformed factor, weight or scheduled event. State is left untouched."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class UnknownAssetError(BiasEngineError, KeyError):
    """Asset code outside the fixed universe."""

    def __init__(self, asset: object):
        self.asset = asset
        super().__init__(f"Unknown asset: {asset!r}")

    def __str__(self) -> str:
        return self.args[0]


class ProviderError(BiasEngineError):
    """An external technical / central-bank score provider failed for one run."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider}: {reason}")


class ServiceClosedError(BiasEngineError):
    """Operation attempted on a closed service."""
