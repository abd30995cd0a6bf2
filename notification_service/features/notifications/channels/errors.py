"""Provider error classification.

Every dispatcher funnels its failure text through :func:`classify_error`,
so replacing the heuristic only touches this module.
"""

from __future__ import annotations

from notification_service.features.notifications.enums import ErrorCategory

# Ordered: the first matching rule wins
_RULES: tuple[tuple[ErrorCategory, tuple[tuple[str, ...], ...]], ...] = (
    (ErrorCategory.INVALID_TOKEN, (("invalid", "token"),)),
    (ErrorCategory.UNREGISTERED_DEVICE, (("unregistered",),)),
    (ErrorCategory.TIMEOUT, (("timeout",),)),
    (ErrorCategory.RATE_LIMIT, (("rate limit",), ("too many",))),
    (ErrorCategory.NETWORK_ERROR, (("network",), ("connection",))),
    (ErrorCategory.AUTH_ERROR, (("auth",), ("credential",))),
    (ErrorCategory.NOT_FOUND, (("not found",),)),
)


def classify_error(error: str | None) -> ErrorCategory:
    """Map free-form provider error text to an :class:`ErrorCategory`.

    Matching is case-insensitive substring search. Each rule is a set of
    alternatives; an alternative matches when all of its fragments occur.
    Text that matches no rule is OTHER; missing or blank text is UNKNOWN.

    Example:
        >>> classify_error("Invalid registration token")
        <ErrorCategory.INVALID_TOKEN: 'INVALID_TOKEN'>
        >>> classify_error(None)
        <ErrorCategory.UNKNOWN: 'UNKNOWN'>
    """
    if not error or not error.strip():
        return ErrorCategory.UNKNOWN

    text = error.lower()
    for category, alternatives in _RULES:
        if any(all(fragment in text for fragment in fragments) for fragments in alternatives):
            return category
    return ErrorCategory.OTHER
