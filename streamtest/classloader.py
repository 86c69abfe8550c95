"""Resolve persisted type names back to Python classes."""
from __future__ import annotations

import importlib
from typing import Callable

ClassLoader = Callable[[str], type]


def type_name(cls: type) -> str:
    """Return the ``module:qualname`` string used to persist ``cls``."""
    return f"{cls.__module__}:{cls.__qualname__}"


def load_class(name: str) -> type:
    """Import the class named by a ``module:qualname`` string."""
    module_name, sep, qualname = name.partition(":")
    if not sep or not module_name or not qualname:
        raise ImportError(f"Malformed type name {name!r}, expected 'module:qualname'")
    try:
        target: object = importlib.import_module(module_name)
        for attr in qualname.split("."):
            target = getattr(target, attr)
    except (ImportError, AttributeError) as exc:
        raise ImportError(f"Cannot load class {name!r}: {exc}") from exc
    if not isinstance(target, type):
        raise ImportError(f"{name!r} does not name a class")
    return target
