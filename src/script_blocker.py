"""
JavaScript Pattern Blocker
Matches script text against the pattern catalog and decides whether the
script should run, according to the configured blocking mode:

  strict      - block on any match
  moderate    - block on any high or critical match
  permissive  - block only on critical matches

Keeps a bounded history of blocked scripts for the popup / stats views.
"""

from collections import Counter, deque

import esprima
from loguru import logger

from engine_config import ScriptBlockerConfig
from pattern_catalog import PatternCatalog
from threat_models import (
    BlockedScript,
    DynamicCall,
    ScriptAnalysisResult,
    most_severe,
    severity_rank,
)
from utils import host_matches, hostname_of, truncate


CONFIDENCE_WEIGHTS = {'low': 0.25, 'medium': 0.5, 'high': 0.75, 'critical': 1.0}

MODE_MIN_SEVERITY = {'strict': 'low', 'moderate': 'high', 'permissive': 'critical'}

MAX_SCRIPT_SIZE_FOR_AST = 3 * 1024 * 1024
MAX_TRAVERSE_DEPTH = 10000

DYNAMIC_CALLEES = {'eval', 'Function', 'window.eval', 'window.Function'}


class JSPatternBlocker:
    """Per-install script analyzer with a mode-dependent block decision."""

    def __init__(self, catalog=None, config=None):
        self.catalog = catalog or PatternCatalog.default()
        self.config = config or ScriptBlockerConfig()
        self._history = deque(maxlen=self.config.history_size)

    def analyze(self, code, source_url='inline'):
        """
        Analyze script text.

        Args:
            code: the script body
            source_url: where the script came from, 'inline' for page scripts

        Returns:
            ScriptAnalysisResult
        """
        if not self.config.enabled or self.is_allowlisted(source_url):
            return ScriptAnalysisResult()

        matched = self.catalog.match(code)
        if not matched:
            return ScriptAnalysisResult()

        should_block = self._should_block(matched)
        confidence = self._calculate_confidence(matched)
        if should_block:
            logger.info(f"[JSController] Blocking script from {source_url}: "
                        f"{', '.join(r.id for r in matched)}")

        return ScriptAnalysisResult(
            is_suspicious=True,
            matched_rules=matched,
            should_block=should_block,
            confidence=confidence,
            dynamic_calls=find_dynamic_calls(code),
        )

    def is_allowlisted(self, source_url):
        hostname = hostname_of(source_url)
        if not hostname:
            return False
        return any(host_matches(hostname, domain) for domain in self.config.allowlist)

    def _should_block(self, matched):
        threshold = severity_rank(MODE_MIN_SEVERITY[self.config.mode])
        return any(severity_rank(r.severity) >= threshold for r in matched)

    def _calculate_confidence(self, matched):
        max_weight = max(CONFIDENCE_WEIGHTS[r.severity] for r in matched)
        bonus = min(0.1 * len(matched), 0.3)
        return min(max_weight + bonus, 1.0)

    # -- history ----------------------------------------------------------

    def record_block(self, url, content, matched):
        """Append a blocked script to the history and return the record."""
        top = max(matched, key=lambda r: severity_rank(r.severity))
        record = BlockedScript(
            url=url,
            reason=', '.join(r.name for r in matched),
            pattern=top.id,
            content=truncate(content, 100, '...'),
            severity=most_severe(r.severity for r in matched),
        )
        self._history.append(record)
        return record

    def record_external_block(self, record):
        """Recording path for blocks decided by the interception guard."""
        self._history.append(record)
        logger.info(f"[JSController] {record.method}() blocked in page: {record.pattern} ({record.severity})")
        return record

    @property
    def history(self):
        return list(self._history)

    def clear_history(self):
        self._history.clear()

    def get_stats(self):
        records = list(self._history)
        return {
            'total_blocked': len(records),
            'recent_blocks': list(reversed(records[-10:])),
            'severity_counts': dict(Counter(r.severity for r in records)),
        }

    # -- config -----------------------------------------------------------

    def get_config(self):
        return self.config.model_dump()

    def update_config(self, **changes):
        self.config = ScriptBlockerConfig(**{**self.config.model_dump(), **changes})
        if self._history.maxlen != self.config.history_size:
            self._history = deque(self._history, maxlen=self.config.history_size)


# ---------------------------------------------------------------------------
# AST evidence
# ---------------------------------------------------------------------------

def find_dynamic_calls(code):
    """
    Locate eval / Function call sites with esprima. Scripts that do not parse
    (minified fragments, obfuscated payloads) simply yield no call sites.
    """
    if len(code) > MAX_SCRIPT_SIZE_FOR_AST:
        return []
    try:
        ast = esprima.parseScript(code, {'loc': True, 'tolerant': True})
    except Exception as e:
        logger.debug(f"[JSController] AST parse failed: {e}")
        return []

    calls = []
    _traverse(ast, calls, 0)
    return calls


def _traverse(node, calls, depth):
    if depth > MAX_TRAVERSE_DEPTH or node is None or not hasattr(node, 'type'):
        return

    if node.type in ('CallExpression', 'NewExpression'):
        callee = _node_name(getattr(node, 'callee', None))
        if callee in DYNAMIC_CALLEES:
            loc = getattr(node, 'loc', None)
            start = getattr(loc, 'start', None)
            calls.append(DynamicCall(
                callee=callee.split('.')[-1],
                line=getattr(start, 'line', None),
                column=getattr(start, 'column', None),
            ))

    for key in dir(node):
        if key.startswith('_'):
            continue
        value = getattr(node, key, None)
        if isinstance(value, list):
            for item in value:
                if hasattr(item, 'type'):
                    _traverse(item, calls, depth + 1)
        elif hasattr(value, 'type'):
            _traverse(value, calls, depth + 1)


def _node_name(node):
    node_type = getattr(node, 'type', '')
    if node_type == 'Identifier':
        return getattr(node, 'name', '')
    if node_type == 'MemberExpression':
        obj = _node_name(getattr(node, 'object', None))
        prop = _node_name(getattr(node, 'property', None))
        return f"{obj}.{prop}" if obj and prop else obj or prop
    return ''
