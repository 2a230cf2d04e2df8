"""Custom exceptions for contextfeeder."""


class ContextFeederError(Exception):
    """Base exception for all contextfeeder errors."""


class ConfigurationError(ContextFeederError):
    """Malformed model profiles or configuration."""


class UnknownModelError(ConfigurationError):
    """Raised when a model identifier is not in the profile registry."""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(
            f"Unknown model '{model_id}'. Register a profile for it or add it "
            f"under 'models' in .contextfeeder/config.json"
        )
