"""Exceptions and warnings raised by the survival pipeline."""


class PipelineError(Exception):
    """Base class for every error raised by this package."""


class ParseError(PipelineError, ValueError):
    """A raw field could not be derived into its feature."""


class ImputationError(PipelineError):
    """Missing values could not be filled reliably."""


class ConfigurationError(PipelineError):
    """A model family cannot be tuned on the data it was given."""


class NovelCategoryWarning(UserWarning):
    """A categorical level seen at apply time was absent when the plan was fit."""
