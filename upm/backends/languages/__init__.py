"""Language backends, one module per ecosystem."""

from upm.backends.languages.elisp import ElispBackend
from upm.backends.languages.python import PoetryBackend

__all__ = ["ElispBackend", "PoetryBackend"]
