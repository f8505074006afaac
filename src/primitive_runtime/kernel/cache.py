from __future__ import annotations

from typing import Dict, Tuple

from .sandbox import CompiledHandler, compile_handler, fingerprint


class HandlerCache:
    """Compiled handlers keyed by (primitive id, handler fingerprint)."""

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], CompiledHandler] = {}

    def get_or_compile(self, primitive_id: str, handler_text: str) -> CompiledHandler:
        key = (primitive_id, fingerprint(handler_text))
        handler = self._entries.get(key)
        if handler is None:
            handler = compile_handler(handler_text, name=primitive_id)
            self._entries[key] = handler
        return handler

    def invalidate(self, primitive_id: str) -> int:
        """Drop every entry for a primitive, whatever its fingerprint."""
        stale = [key for key in self._entries if key[0] == primitive_id]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, item: Tuple[str, str]) -> bool:
        primitive_id, handler_text = item
        return (primitive_id, fingerprint(handler_text)) in self._entries

    def __len__(self) -> int:
        return len(self._entries)
