from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "Workflow",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .service import Workflow


def __getattr__(name: str):
    if name == "Workflow":
        from .service import Workflow

        return Workflow
    raise AttributeError(f"module 'repoflow' has no attribute {name!r}")
