"""Virtual paths: opaque, provider-prefixed addresses for projects and sessions.

A virtual path looks like ``{provider}://{id}`` or
``{provider}://{project-id}/{session-id}``. Decoding always validates each id
before it is handed back, so nothing returned from here can escape a base
directory or inject into a store key.
"""

from typing import Callable

from .errors import InvalidIdentifierError

Validator = Callable[[str], bool]


def encode(provider: str, *parts: str) -> str:
    """Build ``{provider}://part[/part]``."""
    return f"{provider}://" + "/".join(parts)


def strip_scheme(provider: str, value: str) -> str:
    """Remove the ``{provider}://`` prefix; bare ids pass through."""
    prefix = f"{provider}://"
    if value.startswith(prefix):
        return value[len(prefix):]
    return value


def decode_single(provider: str, value: str, validator: Validator) -> str:
    """Decode a one-part virtual path and validate the id."""
    ident = strip_scheme(provider, value)
    if not validator(ident):
        raise InvalidIdentifierError(f"Invalid {provider} identifier: {ident!r}")
    return ident


def decode_pair(
    provider: str,
    value: str,
    first: Validator,
    second: Validator,
) -> tuple[str, str]:
    """Decode ``{provider}://a/b`` into ``(a, b)``, validating both parts."""
    rest = strip_scheme(provider, value)
    head, sep, tail = rest.partition("/")
    if not sep:
        raise InvalidIdentifierError(f"Invalid {provider} session path: {value!r}")
    if not first(head):
        raise InvalidIdentifierError(f"Invalid {provider} project identifier: {head!r}")
    if not second(tail):
        raise InvalidIdentifierError(f"Invalid {provider} session identifier: {tail!r}")
    return head, tail
