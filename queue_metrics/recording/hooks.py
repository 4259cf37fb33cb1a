"""Hooks de transformación ejecutados antes/después de persistir una muestra.

Un hook es una función pura ``dict -> dict``. Se ejecutan en orden de
prioridad ascendente; a igual prioridad, en orden de registro (sort estable).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

BEFORE_RECORD = "before_record"
AFTER_RECORD = "after_record"
CONTEXTS = (BEFORE_RECORD, AFTER_RECORD)

DEFAULT_PRIORITY = 100

Hook = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class _Registered:
    hook: Hook
    priority: int
    name: str


class HookRegistry:
    def __init__(self) -> None:
        self._hooks: Dict[str, List[_Registered]] = {}
        self._lock = threading.Lock()

    def register(self, context: str, hook: Hook, priority: int = DEFAULT_PRIORITY) -> None:
        if context not in CONTEXTS:
            raise ValueError(f"Unknown hook context {context!r}, expected one of {CONTEXTS}")
        if not callable(hook):
            raise TypeError("hook must be callable")
        entry = _Registered(hook, int(priority), getattr(hook, "__name__", repr(hook)))
        with self._lock:
            hooks = self._hooks.setdefault(context, []) + [entry]
            self._hooks[context] = sorted(hooks, key=lambda h: h.priority)
        logger.debug("HOOK_REGISTERED context=%s name=%s priority=%d", context, entry.name, entry.priority)

    def hooks(self, context: str) -> List[Hook]:
        with self._lock:
            return [entry.hook for entry in self._hooks.get(context, [])]

    def run(self, context: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Pasa ``data`` por la cadena de hooks del contexto."""
        with self._lock:
            entries = list(self._hooks.get(context, []))
        for entry in entries:
            result = entry.hook(dict(data))
            if not isinstance(result, dict):
                raise TypeError(
                    f"hook {entry.name} in {context} returned {type(result).__name__}, expected dict"
                )
            data = result
        return data

    def clear(self, context: Optional[str] = None) -> None:
        with self._lock:
            if context is None:
                self._hooks.clear()
            else:
                self._hooks.pop(context, None)
