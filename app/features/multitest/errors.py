from __future__ import annotations


class MultiTestError(ValueError):
    """Base for caller-facing evaluation errors."""

    error_code = "E_MULTITEST"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error_code": self.error_code, "message": self.message}


class ConfigurationError(MultiTestError):
    """Invalid inputs or limits; nothing was sent to the judge."""

    error_code = "E_CONFIGURATION"


class ExceedsSupportedScaleError(ConfigurationError):
    error_code = "E_SCALE"


class SynthesisError(MultiTestError):
    """The solution cannot be wrapped into a driver program.

    Reported to the learner like a compile error.
    """

    error_code = "E_SYNTHESIS"


__all__ = ["MultiTestError", "ConfigurationError", "ExceedsSupportedScaleError", "SynthesisError"]
