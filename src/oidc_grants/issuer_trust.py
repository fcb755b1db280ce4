"""Issuer allow/deny evaluation.

Issuer specifications form a closed set of variants:

- ``Exact("https://idp/realms/a")``      string equality
- ``Pattern(re.compile(r"https://idp/.*"))``  ``re.search`` on the issuer
- ``Predicate(lambda iss: ...)``        arbitrary callable

Evaluation rules:

1. At least one allow-spec must match, otherwise ``NOT_ALLOWED``.
2. Any matching deny-spec turns the result into ``DENIED``, even when an
   allow-spec also matched. An empty deny list never denies.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TypeAlias

from .errors import IssuerDenied, IssuerNotAllowed


@dataclass(frozen=True, slots=True)
class Exact:
    issuer: str


@dataclass(frozen=True, slots=True)
class Pattern:
    regex: re.Pattern[str]


@dataclass(frozen=True, slots=True)
class Predicate:
    func: Callable[[str], bool]


TrustSpec: TypeAlias = Exact | Pattern | Predicate


class TrustDecision(enum.Enum):
    ALLOWED = "allowed"
    NOT_ALLOWED = "not_allowed"
    DENIED = "denied"


def as_trust_spec(value: TrustSpec | str | re.Pattern[str] | Callable[[str], bool]) -> TrustSpec:
    """Convert a configuration value into a TrustSpec variant.

    Strings become ``Exact``, compiled regexes ``Pattern`` and callables
    ``Predicate``. Variants are returned unchanged.
    """
    if isinstance(value, (Exact, Pattern, Predicate)):
        return value
    if isinstance(value, str):
        return Exact(value)
    if isinstance(value, re.Pattern):
        return Pattern(value)
    if callable(value):
        return Predicate(value)
    raise TypeError(f"Unsupported issuer spec: {value!r}")


def matches(spec: TrustSpec, issuer: str) -> bool:
    """Single dispatch point over the TrustSpec variants."""
    match spec:
        case Exact(expected):
            return issuer == expected
        case Pattern(regex):
            return regex.search(issuer) is not None
        case Predicate(func):
            return bool(func(issuer))


def evaluate(
    issuer: str,
    allow: Iterable[TrustSpec],
    deny: Iterable[TrustSpec] = (),
) -> TrustDecision:
    """Evaluate ``issuer`` against ordered allow and deny lists."""
    if any(matches(spec, issuer) for spec in deny):
        return TrustDecision.DENIED

    if any(matches(spec, issuer) for spec in allow):
        return TrustDecision.ALLOWED

    return TrustDecision.NOT_ALLOWED


@dataclass(frozen=True, slots=True)
class IssuerPolicy:
    """Allow/deny lists bundled for repeated checks.

    Example:
        ```python
        policy = IssuerPolicy.of(
            allowed=["https://idp/realms/a", re.compile(r"^https://idp/realms/")],
            denied=["https://idp/realms/legacy"],
        )
        policy.check(token.issuer)  # raises IssuerDenied / IssuerNotAllowed
        ```
    """

    allowed: Sequence[TrustSpec]
    denied: Sequence[TrustSpec] = field(default=())

    @classmethod
    def of(
        cls,
        allowed: Iterable[TrustSpec | str | re.Pattern[str] | Callable[[str], bool]],
        denied: Iterable[TrustSpec | str | re.Pattern[str] | Callable[[str], bool]] = (),
    ) -> IssuerPolicy:
        return cls(
            allowed=tuple(as_trust_spec(v) for v in allowed),
            denied=tuple(as_trust_spec(v) for v in denied),
        )

    def evaluate(self, issuer: str) -> TrustDecision:
        return evaluate(issuer, self.allowed, self.denied)

    def check(self, issuer: str) -> None:
        """Raise unless ``issuer`` is allowed.

        Raises:
            IssuerDenied: A deny-spec matched.
            IssuerNotAllowed: No allow-spec matched.
        """
        decision = self.evaluate(issuer)
        if decision is TrustDecision.DENIED:
            raise IssuerDenied(f'Token issuer "{issuer}" is denied')
        if decision is TrustDecision.NOT_ALLOWED:
            raise IssuerNotAllowed(f'Token issuer "{issuer}" is not allowed')
