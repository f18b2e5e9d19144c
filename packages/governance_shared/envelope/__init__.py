"""Public shared envelope API for governance components."""

from .builders import empty, failure, success, with_error
from .envelope import Envelope
from .meta import EnvelopeKind, EnvelopeMeta, new_meta
from .payload import Payload
from .validate import validate_meta

__all__ = [
    "Envelope",
    "EnvelopeKind",
    "EnvelopeMeta",
    "Payload",
    "empty",
    "failure",
    "new_meta",
    "success",
    "validate_meta",
    "with_error",
]
