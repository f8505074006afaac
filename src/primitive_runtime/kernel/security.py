"""
Security Validator: textual screening of handler bodies.

This is a pattern blocklist, not an isolation boundary. It catches careless
handler code (an ``import os`` pasted from a notebook, a stray ``open()``)
before it is persisted or mounted. Obfuscated code can get past it; the
sandbox namespace is the second line, and neither replaces process isolation.

Blocked patterns fail the scan. Warning patterns are advisory only and never
change ``safe``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Pattern, Tuple


@dataclass
class SecurityReport:
    safe: bool
    warnings: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"safe": self.safe, "warnings": list(self.warnings), "blocked": list(self.blocked)}


def _rx(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.MULTILINE)


BLOCKED_PATTERNS: List[Tuple[Pattern[str], str]] = [
    # Dynamic module loading
    (_rx(r"^\s*import\s+\w"), "Module import statement"),
    (_rx(r"^\s*from\s+[\w.]+\s+import\b"), "Module import statement"),
    (_rx(r"\b__import__\b"), "Dynamic import via __import__"),
    (_rx(r"\bimportlib\b"), "importlib module"),
    # Ambient process / environment access
    (_rx(r"\bos\s*\."), "Access to os module"),
    (_rx(r"\bsys\s*\."), "Access to sys module"),
    (_rx(r"\bsubprocess\b"), "subprocess module"),
    (_rx(r"\bshutil\b"), "shutil module"),
    (_rx(r"(?<![\w.])open\s*\("), "File access via open()"),
    # String-to-code evaluation
    (_rx(r"(?<![\w.])eval\s*\("), "Use of eval()"),
    (_rx(r"(?<![\w.])exec\s*\("), "Use of exec()"),
    (_rx(r"(?<![\w.])compile\s*\("), "Use of compile()"),
    # Shared global / ambient state
    (_rx(r"\bglobals\s*\("), "Access to globals()"),
    (_rx(r"\blocals\s*\("), "Access to locals()"),
    (_rx(r"\bvars\s*\("), "Access to vars()"),
    (_rx(r"\b__builtins__\b|\bbuiltins\b"), "Access to builtins"),
    # Reflection / class hierarchy manipulation
    (_rx(r"__class__|__subclasses__|__bases__|__mro__"), "Class hierarchy traversal"),
    (_rx(r"__globals__|__code__|__closure__"), "Function internals access"),
    (_rx(r"__dict__"), "Object namespace access"),
    (_rx(r"\b(?:getattr|setattr|delattr)\s*\("), "Dynamic attribute access"),
    (_rx(r"\binspect\b"), "inspect module"),
    # Network primitives (network calls go through declared capabilities)
    (_rx(r"\bsocket\b"), "Raw socket access (use an HTTP primitive instead)"),
    (_rx(r"\burllib\b|\bhttp\.client\b"), "urllib/http.client (use an HTTP primitive instead)"),
    (_rx(r"\b(?:requests|httpx|aiohttp)\s*\."), "HTTP client library (use an HTTP primitive instead)"),
]

WARNING_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (_rx(r"\bwhile\s+(?:True|1)\s*:"), "Potential infinite loop"),
    (_rx(r"\bitertools\s*\.\s*(?:count|cycle|repeat)\s*\("), "Potential infinite loop"),
    (_rx(r"\bsleep\s*\("), "Use of sleep()"),
    (_rx(r"\bcall_later\b|\bcall_at\b|\bTimer\s*\("), "Timer scheduling"),
    (_rx(r"\.__\w+__"), "Dunder attribute access"),
]


def _matches(patterns: List[Tuple[Pattern[str], str]], text: str) -> List[str]:
    reasons: List[str] = []
    for pattern, message in patterns:
        if message not in reasons and pattern.search(text):
            reasons.append(message)
    return reasons


def scan(handler_text: str) -> SecurityReport:
    """Screen handler text against the blocked and warning pattern sets."""
    blocked = _matches(BLOCKED_PATTERNS, handler_text)
    warnings = _matches(WARNING_PATTERNS, handler_text)
    return SecurityReport(safe=not blocked, warnings=warnings, blocked=blocked)
