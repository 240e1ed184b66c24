class PipelineError(Exception):
    """Base class for failures raised by the location and image pipeline."""


class NotFound(PipelineError):
    """Unknown country, empty continent, or a provider answer with nothing usable."""


class SamplingExhausted(PipelineError):
    """No populated coordinate found inside the bounding box."""


class ProviderUnavailable(PipelineError):
    """An upstream provider kept failing after the retry policy ran out."""


class RateLimitUnavailable(PipelineError):
    """The rate-limit store could not be reached."""
