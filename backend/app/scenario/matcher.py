from __future__ import annotations

import logging

from app.scenario.models import Predicate

logger = logging.getLogger("scenario.matcher")


def match_when(when: Predicate | dict | None, text: str | None) -> bool:
    """Evaluate a branch predicate against event text.

    Priority: missing predicate or ``otherwise`` always matches, then
    ``containsAny`` (case-insensitive substring), then ``regex``. A predicate
    with none of these never matches. Bad patterns are a non-match.
    """
    predicate = when if isinstance(when, Predicate) else Predicate.from_dict(when)
    if not predicate.present:
        return True
    if predicate.otherwise:
        return True

    value = str(text or "")
    if predicate.contains_any is not None:
        haystack = value.lower()
        return any(str(token).lower() in haystack for token in predicate.contains_any)

    if predicate.regex is not None:
        if predicate.compiled is None:
            logger.debug("Predicate regex unusable | pattern=%s err=%s", predicate.regex, predicate.error)
            return False
        return predicate.compiled.search(value) is not None

    return False


def first_match(branches: list, text: str | None):
    for branch in branches or []:
        if match_when(branch.when, text):
            return branch
    return None
