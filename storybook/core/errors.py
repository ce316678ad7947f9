"""
Error types shared across the storybook service.
"""


class StorybookError(Exception):
    """Base class for every error raised by the storybook package."""


class ConfigurationError(StorybookError):
    """A required setting or credential is missing. Fatal at startup."""


class GenerationError(StorybookError):
    """
    An external collaborator failed (transport error or malformed response).

    The message is short and safe to show to the user.
    """


class ValidationError(StorybookError):
    """The caller supplied invalid input (empty premise, unknown character, ...)."""


class InvalidTransition(StorybookError):
    """The requested action is not allowed in the session's current stage."""
