"""Callback definitions for processing progress reporting."""

from dataclasses import dataclass
from typing import Any, Callable


def _ignore(*args: Any) -> None:
    return None


@dataclass
class ProcessingCallbacks:
    """Callbacks that processing functions will call to report progress"""

    on_stage_change: Callable[[str, str], None] = _ignore
    on_page_rasterized: Callable[[str, int, int], None] = _ignore
    on_tile_complete: Callable[[str, Any, int, int], None] = _ignore
    on_error: Callable[[str, str], None] = _ignore
    on_complete: Callable[[str, Any], None] = _ignore
