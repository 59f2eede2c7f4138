"""
Interception Guard
Decides, for each intercepted dynamic-code primitive (eval, Function) and each
raw markup assignment (innerHTML, outerHTML), whether the page may proceed.

Runs the reduced three-tier rule table from the pattern catalog:
  critical - always blocked
  high     - blocked in strict and moderate mode
  medium   - blocked in strict mode only

Every block is handed to the script blocker's recording path so it shows up
in the same history and stats as a blocked script.
"""

from typing import Optional

from bs4 import BeautifulSoup
from loguru import logger
from pydantic import BaseModel

from pattern_catalog import GUARD_TIERS, GUARD_TRIGGER_WORDS, GUARD_TRIVIAL_LENGTH, compile_guard_rules
from threat_models import BlockedScript


MODE_TIERS = {
    'strict': ('critical', 'high', 'medium'),
    'moderate': ('critical', 'high'),
    'permissive': ('critical',),
}

MARKUP_TAGS = ('script', 'iframe')
MARKUP_HANDLERS = ('onerror', 'onload', 'onclick')


class GuardDecision(BaseModel):
    blocked: bool = False
    method: str = 'eval'
    pattern: Optional[str] = None
    severity: Optional[str] = None
    code: str = ''


class InterceptionGuard:
    """Page-context guard sharing the blocker's mode and history."""

    def __init__(self, blocker, rules=None, on_block=None):
        self.blocker = blocker
        # receives every BlockedScript; the engine routes these through its counters
        self.on_block = on_block or blocker.record_external_block
        self._rules = compile_guard_rules(rules)

    @property
    def mode(self):
        return self.blocker.config.mode

    def inspect_code(self, code, method='eval', source_url='inline'):
        """Inspect the code passed to eval() or the Function constructor."""
        code = str(code)
        if not self.blocker.config.enabled:
            return GuardDecision(method=method)

        if len(code) < GUARD_TRIVIAL_LENGTH and not GUARD_TRIGGER_WORDS.search(code):
            return GuardDecision(method=method)

        enforced = MODE_TIERS[self.mode]
        for tier in GUARD_TIERS:
            if tier not in enforced:
                continue
            for regex, name, severity in self._rules:
                if severity == tier and regex.search(code):
                    return self._block(method, name, severity, code, source_url)

        return GuardDecision(method=method)

    def inspect_markup(self, html, method='innerHTML', source_url='inline'):
        """Inspect markup about to be assigned through innerHTML / outerHTML."""
        html = str(html)
        if not self.blocker.config.enabled:
            return GuardDecision(method=method)

        pattern = self._find_markup_threat(html)
        if pattern:
            return self._block(method, pattern, 'high', html, source_url)
        return GuardDecision(method=method)

    def _find_markup_threat(self, html):
        soup = BeautifulSoup(html, 'html.parser')
        for tag_name in MARKUP_TAGS:
            if soup.find(tag_name) is not None:
                return f'<{tag_name}> element'

        for tag in soup.find_all(True):
            for attr, value in tag.attrs.items():
                attr = attr.lower()
                if attr in MARKUP_HANDLERS:
                    return f'{attr} handler'
                values = value if isinstance(value, list) else [value]
                if any(str(v).strip().lower().startswith('javascript:') for v in values):
                    return 'javascript: URL'
        return None

    def _block(self, method, pattern, severity, code, source_url):
        decision = GuardDecision(
            blocked=True,
            method=method,
            pattern=pattern,
            severity=severity,
            code=code[:200],
        )
        logger.warning(f"[JSBlocker] BLOCKED {method} - {severity.upper()} threat ({pattern})")
        self.on_block(to_blocked_script(decision, source_url))
        return decision


def to_blocked_script(decision, source_url='inline'):
    """Convert a guard block decision into a history record."""
    return BlockedScript(
        url=source_url,
        reason=f"{decision.method}() blocked: {decision.pattern}",
        pattern=decision.pattern,
        content=decision.code,
        severity=decision.severity.lower(),
        method=decision.method,
    )
