"""
Threat Models
Shared records passed between the detectors, the dispatcher and the
storage / HTTP layers.
"""

import re
import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


Severity = Literal['low', 'medium', 'high', 'critical']
Verdict = Literal['safe', 'suspicious', 'malicious']
RuleCategory = Literal['cryptomining', 'injection', 'obfuscation', 'malware', 'tracking', 'network']
BlockMode = Literal['strict', 'moderate', 'permissive']
Recommendation = Literal['monitor', 'warn', 'block', 'disable', 'uninstall']

SEVERITY_RANK = {'low': 1, 'medium': 2, 'high': 3, 'critical': 4}


def severity_rank(severity):
    return SEVERITY_RANK.get(severity, 0)


def most_severe(severities):
    """Return the highest severity in an iterable, or None if it is empty."""
    ranked = sorted(severities, key=severity_rank, reverse=True)
    return ranked[0] if ranked else None


# ---------------------------------------------------------------------------
# Pattern catalog
# ---------------------------------------------------------------------------

class DetectionRule(BaseModel):
    """A single severity-tagged script pattern."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    pattern: str
    description: str
    severity: Severity
    category: RuleCategory
    ignore_case: bool = False

    _compiled: Optional[re.Pattern] = PrivateAttr(default=None)

    @property
    def regex(self) -> re.Pattern:
        if self._compiled is None:
            flags = re.IGNORECASE if self.ignore_case else 0
            self._compiled = re.compile(self.pattern, flags)
        return self._compiled

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


# ---------------------------------------------------------------------------
# URL analysis
# ---------------------------------------------------------------------------

class ThreatIndicator(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    severity: Severity
    description: str
    category: str = 'url'
    score: float = 0.0
    evidence: Any = None


class URLAnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    verdict: Verdict
    confidence: float
    reason: str
    indicators: List[ThreatIndicator] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Script analysis
# ---------------------------------------------------------------------------

class DynamicCall(BaseModel):
    """Location of an eval / Function call found in parsed script text."""

    callee: str
    line: Optional[int] = None
    column: Optional[int] = None


class ScriptAnalysisResult(BaseModel):
    is_suspicious: bool = False
    matched_rules: List[DetectionRule] = Field(default_factory=list)
    should_block: bool = False
    confidence: float = 0.0
    dynamic_calls: List[DynamicCall] = Field(default_factory=list)


class BlockedScript(BaseModel):
    url: str
    reason: str
    pattern: str
    content: str
    severity: Severity
    method: str = 'script'
    timestamp: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Page behavior
# ---------------------------------------------------------------------------

class ObservedScript(BaseModel):
    type: Literal['external', 'inline']
    src: Optional[str] = None
    domain: Optional[str] = None
    hash: Optional[str] = None
    length: int = 0


class NetworkRequest(BaseModel):
    domain: str
    type: str = 'other'
    url: Optional[str] = None


class ApiUsage(BaseModel):
    has_webgl: bool = False
    has_audio_context: bool = False
    has_rtc: bool = False
    has_crypto: bool = False


class PageBehaviorData(BaseModel):
    scripts: List[ObservedScript] = Field(default_factory=list)
    network_requests: List[NetworkRequest] = Field(default_factory=list)
    apis: ApiUsage = Field(default_factory=ApiUsage)


class RunningStat(BaseModel):
    mean: float = 0.0
    std_dev: float = 0.0


class BehaviorBaseline(BaseModel):
    script_count: RunningStat = Field(default_factory=RunningStat)
    request_count: RunningStat = Field(default_factory=RunningStat)
    updated_at: Optional[float] = None


class WebsiteBehaviorProfile(BaseModel):
    domain: str
    first_seen: float = Field(default_factory=time.time)
    last_visit: float = Field(default_factory=time.time)
    visit_count: int = 0
    baseline_locked: bool = False
    script_urls: Set[str] = Field(default_factory=set)
    script_domains: Set[str] = Field(default_factory=set)
    script_hashes: Set[str] = Field(default_factory=set)
    network_domains: Set[str] = Field(default_factory=set)
    baseline: BehaviorBaseline = Field(default_factory=BehaviorBaseline)


# ---------------------------------------------------------------------------
# Extensions
# ---------------------------------------------------------------------------

class ExtensionInfo(BaseModel):
    """What the extension platform reports for one installed extension."""

    id: str
    name: str
    version: str = ''
    permissions: List[str] = Field(default_factory=list)
    host_permissions: List[str] = Field(default_factory=list)
    type: str = 'extension'
    update_url: Optional[str] = None
    enabled: bool = True


class ExtensionProfile(BaseModel):
    id: str
    name: str
    version: str = ''
    permissions: List[str] = Field(default_factory=list)
    host_permissions: List[str] = Field(default_factory=list)
    risk_score: int = 0
    first_seen: float = Field(default_factory=time.time)
    last_checked: float = Field(default_factory=time.time)


class ExtensionChange(BaseModel):
    type: Literal['permission', 'code', 'behavior', 'network']
    description: str
    old_value: Any = None
    new_value: Any = None
    risk_level: int = Field(ge=1, le=10)


# ---------------------------------------------------------------------------
# ML signal
# ---------------------------------------------------------------------------

class MLPrediction(BaseModel):
    is_threat: bool
    confidence: float
    category: Literal['safe', 'phishing', 'malware']
    scores: List[float] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------

class _AnomalyBase(BaseModel):
    target_id: str
    target_name: str
    severity: Severity
    confidence: float
    detected_at: float = Field(default_factory=time.time)


class BehaviorAnomaly(_AnomalyBase):
    type: Literal['website'] = 'website'
    indicators: List[ThreatIndicator] = Field(default_factory=list)
    recommendation: Literal['monitor', 'warn', 'block'] = 'monitor'


class ExtensionAnomaly(_AnomalyBase):
    type: Literal['extension'] = 'extension'
    changes: List[ExtensionChange] = Field(default_factory=list)
    recommendation: Literal['monitor', 'warn', 'disable', 'uninstall'] = 'monitor'


class MLAnomaly(_AnomalyBase):
    type: Literal['ml-threat'] = 'ml-threat'
    url: str
    prediction: MLPrediction
    recommendation: Literal['monitor', 'warn', 'block'] = 'monitor'


Anomaly = Annotated[
    Union[BehaviorAnomaly, ExtensionAnomaly, MLAnomaly],
    Field(discriminator='type'),
]


class AnomalyEnvelope(BaseModel):
    """Wrapper used to validate a stored or posted anomaly of any kind."""

    anomaly: Anomaly


class NotificationRequest(BaseModel):
    title: str
    message: str
    priority: int = 1
    require_interaction: bool = False
    actions: List[str] = Field(default_factory=list)
    icon_url: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
