class ConfigurationError(ValueError):
    """Raised for caller or setup mistakes that make a run meaningless"""


class InvariantViolation(RuntimeError):
    """Raised when the sampler's count bookkeeping no longer yields proper distributions"""
