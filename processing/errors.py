"""Pipeline errors.

File system failures are not wrapped: missing or unwritable paths surface as the
built-in ``OSError`` family (``FileNotFoundError``, ``PermissionError``).
"""


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class MalformedInputError(PipelineError):
    """Raised when a required column or attribute is missing or holds bad values."""

    error_code = "MALFORMED_INPUT"


class UnsupportedFormatError(PipelineError):
    """Raised when a geometry driver or output image format is not available."""

    error_code = "UNSUPPORTED_FORMAT"


class ConfigError(PipelineError):
    """Raised for invalid configuration values."""

    error_code = "CONFIG_ERROR"
