from __future__ import annotations


class InvalidArgument(ValueError):
    """Bad symbol or depth supplied at startup."""


class FeedUnavailable(RuntimeError):
    """The snapshot request failed or returned a payload we cannot use."""


class BootstrapFailed(RuntimeError):
    """No fresh snapshot could be bridged to the update stream."""
