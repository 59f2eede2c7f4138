"""
URL Heuristic Analyzer
Scores a single URL for phishing / impersonation signals:
typosquatting against protected brands, homograph (mixed script) hosts,
and structural red flags such as raw IPs, throwaway TLDs, credential
paths and parameters, shorteners and odd ports.
"""

import re
import time
from collections import OrderedDict
from urllib.parse import parse_qsl, urlsplit

from loguru import logger

from engine_config import URLAnalyzerConfig
from threat_models import SEVERITY_RANK, ThreatIndicator, URLAnalysisResult
from url_patterns import (
    EXCESSIVE_DASHES,
    IP_ADDRESS,
    KNOWN_SAFE_DOMAINS,
    MIXED_SCRIPTS,
    PROTECTED_BRANDS,
    SEVERITY_WEIGHTS,
    SUSPICIOUS_KEYWORDS,
    SUSPICIOUS_PARAMS,
    SUSPICIOUS_PATHS,
    SUSPICIOUS_PORTS,
    SUSPICIOUS_TLDS,
    URL_SHORTENERS,
    fold_lookalike_sequences,
    has_lookalike_chars,
    levenshtein_distance,
)
from utils import host_matches, natural_join


MALFORMED_DESCRIPTION = 'Malformed or invalid URL'


def parse_url(url):
    """
    Split a URL, rejecting anything without a scheme and host.

    Raises:
        ValueError: the URL cannot be interpreted
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Not an absolute URL: {url!r}")
    parts.port  # raises ValueError on an out-of-range port
    return parts


def normalize_url(url):
    """Lower-case scheme and host, strip a single trailing slash."""
    try:
        parts = parse_url(url)
    except ValueError:
        return url.strip().lower()

    normalized = f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"
    if parts.query:
        normalized += f"?{parts.query}"
    if parts.fragment:
        normalized += f"#{parts.fragment}"
    return re.sub(r'/$', '', normalized)


def _indicator(type_, severity, description, value):
    return ThreatIndicator(
        type=type_,
        severity=severity,
        description=description,
        category='url',
        score=SEVERITY_WEIGHTS[severity],
        evidence=value,
    )


# ---------------------------------------------------------------------------
# Individual heuristics
# ---------------------------------------------------------------------------

def check_ip_address(hostname):
    if IP_ADDRESS.match(hostname):
        return [_indicator('ip_address', 'high', 'Uses IP address instead of domain name', hostname)]
    return []


def check_suspicious_tld(hostname):
    tld = hostname.rsplit('.', 1)[-1]
    if tld in SUSPICIOUS_TLDS:
        return [_indicator('suspicious_tld', 'medium', f'Uses suspicious TLD: .{tld}', tld)]
    return []


def check_excessive_subdomains(hostname):
    labels = hostname.split('.')
    if len(labels) > 5:
        return [_indicator('excessive_subdomains', 'medium',
                           f'Too many subdomains ({len(labels)} levels)', hostname)]
    return []


def _typosquat_candidates(hostname):
    """Labels left of the TLD (minus 'www') and their dash/underscore parts."""
    labels = [label for label in hostname.split('.')[:-1] if label and label != 'www']
    candidates = []
    for label in labels:
        for token in [label] + re.split(r'[-_]', label):
            if token and token not in candidates:
                candidates.append(token)
    return candidates


def check_typosquatting(hostname):
    """
    Compare every host token against each protected brand.

    Only brand.tld and www.brand.tld are exempt for that brand; other hosts
    of a real brand are left to the known-safe list.
    """
    labels = hostname.split('.')
    if len(labels) < 2 or IP_ADDRESS.match(hostname):
        return []

    candidates = _typosquat_candidates(hostname)
    domain = '.'.join(labels[:-1])
    indicators = []

    for brand in PROTECTED_BRANDS:
        if domain in (brand, f'www.{brand}'):
            continue

        if brand in candidates:
            indicators.append(_indicator('typosquatting', 'critical', f'Impersonates {brand}', domain))
            continue

        similar = False
        lookalike = False
        for token in candidates:
            distance = levenshtein_distance(token, brand)
            similarity = 1 - distance / max(len(token), len(brand))
            if similarity > 0.8 and distance <= 2:
                similar = True
            if has_lookalike_chars(token, brand) or fold_lookalike_sequences(token) == brand:
                lookalike = True

        if similar:
            indicators.append(_indicator('typosquatting', 'high',
                                         f'Similar to {brand} (possible typo)', domain))
        if lookalike:
            indicators.append(_indicator('typosquatting', 'critical',
                                         f'Uses lookalike characters to mimic {brand}', domain))

    return indicators


def _decode_idna_labels(hostname):
    decoded = []
    for label in hostname.split('.'):
        if label.startswith('xn--'):
            try:
                label = label.encode('ascii').decode('idna')
            except UnicodeError:
                pass
        decoded.append(label)
    return '.'.join(decoded)


def check_homograph_attack(hostname):
    if MIXED_SCRIPTS.search(_decode_idna_labels(hostname)):
        return [_indicator('homograph_attack', 'critical',
                           'Uses mixed character sets (homograph attack)', hostname)]
    return []


def check_suspicious_path(path):
    for pattern in SUSPICIOUS_PATHS:
        if pattern.search(path):
            return [_indicator('suspicious_path', 'medium',
                               f'Suspicious path detected: {pattern.pattern}', path)]
    return []


def check_suspicious_params(query):
    indicators = []
    for name, _ in parse_qsl(query, keep_blank_values=True):
        if name.lower() in SUSPICIOUS_PARAMS:
            indicators.append(_indicator('suspicious_params', 'high', f'Suspicious parameter: {name}', name))
    return indicators


def check_url_shortener(hostname):
    if hostname in URL_SHORTENERS:
        return [_indicator('url_shortener', 'medium',
                           'URL shortener detected (hides real destination)', hostname)]
    return []


def check_suspicious_port(port):
    if port is None or port in (80, 443):
        return []
    if port in SUSPICIOUS_PORTS:
        return [_indicator('suspicious_port', 'high', f'Uses suspicious port: {port}', port)]
    return [_indicator('suspicious_port', 'low', f'Uses non-standard port: {port}', port)]


def check_suspicious_keywords(hostname):
    match = SUSPICIOUS_KEYWORDS.search(hostname)
    if match:
        return [_indicator('suspicious_keywords', 'medium',
                           f'Contains suspicious keyword: {match.group(0)}', match.group(0))]
    return []


def check_excessive_dashes(hostname):
    if EXCESSIVE_DASHES.search(hostname):
        return [_indicator('excessive_dashes', 'low', 'Contains excessive dashes in hostname', hostname)]
    return []


def analyze_url_heuristics(url):
    """Run every heuristic; a URL that cannot be parsed yields one malformed indicator."""
    try:
        parts = parse_url(url)
    except ValueError:
        return [_indicator('malformed_url', 'high', MALFORMED_DESCRIPTION, url)]

    hostname = parts.hostname.lower()
    path = parts.path.lower()

    indicators = []
    indicators.extend(check_ip_address(hostname))
    indicators.extend(check_suspicious_tld(hostname))
    indicators.extend(check_excessive_subdomains(hostname))
    indicators.extend(check_typosquatting(hostname))
    indicators.extend(check_homograph_attack(hostname))
    indicators.extend(check_suspicious_path(path))
    indicators.extend(check_suspicious_params(parts.query))
    indicators.extend(check_url_shortener(hostname))
    indicators.extend(check_suspicious_port(parts.port))
    indicators.extend(check_suspicious_keywords(hostname))
    indicators.extend(check_excessive_dashes(hostname))
    return indicators


def calculate_threat_score(indicators):
    """Mean severity weight, flattened with a 0.8 power curve."""
    if not indicators:
        return 0.0
    total = sum(SEVERITY_WEIGHTS[i.severity] for i in indicators)
    normalized = min(total / len(indicators), 1.0)
    return normalized ** 0.8


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class URLHeuristicAnalyzer:
    """Cached, stat-keeping front end for the URL heuristics."""

    def __init__(self, config=None, clock=time.time):
        self.config = config or URLAnalyzerConfig()
        self._clock = clock
        self._cache = OrderedDict()  # normalized url -> (stored_at, result)
        self.reset_stats()

    def analyze(self, url):
        start = time.perf_counter()
        normalized = normalize_url(url)

        if self.config.cache_enabled:
            cached = self._get_cached(normalized)
            if cached is not None:
                self.stats['cache_hits'] += 1
                return cached
            self.stats['cache_misses'] += 1

        if self._is_known_safe(normalized):
            result = URLAnalysisResult(
                url=normalized,
                verdict='safe',
                confidence=0.0,
                reason='Passed quick safety checks',
                indicators=[],
                timestamp=self._clock(),
            )
        else:
            result = self._score(normalized)

        self._update_stats(result, start)
        if self.config.cache_enabled:
            self._set_cached(normalized, result)
        return result

    def _score(self, normalized):
        indicators = analyze_url_heuristics(normalized)

        if len(indicators) == 1 and indicators[0].type == 'malformed_url':
            logger.debug(f"[URLAnalyzer] Malformed URL: {normalized}")
            return URLAnalysisResult(
                url=normalized,
                verdict='suspicious',
                confidence=0.5,
                reason=MALFORMED_DESCRIPTION,
                indicators=indicators,
                timestamp=self._clock(),
            )

        score = self._adjust_score_by_sensitivity(calculate_threat_score(indicators))
        verdict = self._determine_verdict(score, indicators)
        reason = self._generate_reason(verdict, indicators)

        if verdict != 'safe':
            logger.info(f"[URLAnalyzer] {verdict.upper()} {normalized} ({score:.2f}): {reason}")

        return URLAnalysisResult(
            url=normalized,
            verdict=verdict,
            confidence=score,
            reason=reason,
            indicators=indicators,
            timestamp=self._clock(),
        )

    def _is_known_safe(self, url):
        try:
            hostname = parse_url(url).hostname.lower()
        except ValueError:
            return False
        return any(host_matches(hostname, safe) for safe in KNOWN_SAFE_DOMAINS)

    def _adjust_score_by_sensitivity(self, score):
        level = self.config.sensitivity_level
        if level == 'low':
            return score * 0.8
        if level == 'high':
            return min(score * 1.2, 1.0)
        return score

    def _determine_verdict(self, score, indicators):
        if any(i.severity == 'critical' for i in indicators):
            return 'malicious'
        if sum(1 for i in indicators if i.severity == 'high') >= 2:
            return 'malicious'
        if score >= self.config.block_threshold:
            return 'malicious'
        if score >= 0.4:
            return 'suspicious'
        return 'safe'

    def _generate_reason(self, verdict, indicators):
        if verdict == 'safe':
            return 'No suspicious patterns detected'
        if not indicators:
            return 'Suspicious characteristics detected'
        top = sorted(indicators, key=lambda i: SEVERITY_RANK[i.severity], reverse=True)[:3]
        return natural_join([i.description for i in top])

    # -- cache ------------------------------------------------------------

    def _get_cached(self, key):
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at > self.config.cache_ttl:
            del self._cache[key]
            return None
        return result

    def _set_cached(self, key, result):
        if key not in self._cache and len(self._cache) >= self.config.cache_size:
            self._cache.popitem(last=False)
        self._cache[key] = (self._clock(), result)

    def clear_cache(self):
        self._cache.clear()

    @property
    def cache_size(self):
        return len(self._cache)

    # -- stats / config ---------------------------------------------------

    def _update_stats(self, result, start):
        stats = self.stats
        stats['total_analyzed'] += 1
        stats[f'{result.verdict}_count'] += 1
        elapsed_ms = (time.perf_counter() - start) * 1000
        n = stats['total_analyzed']
        stats['average_analysis_time'] = (stats['average_analysis_time'] * (n - 1) + elapsed_ms) / n

    def get_stats(self):
        return dict(self.stats)

    def reset_stats(self):
        self.stats = {
            'total_analyzed': 0,
            'safe_count': 0,
            'suspicious_count': 0,
            'malicious_count': 0,
            'cache_hits': 0,
            'cache_misses': 0,
            'average_analysis_time': 0.0,
        }

    def get_config(self):
        return self.config.model_dump()

    def update_config(self, **changes):
        """Apply config changes; cached verdicts are dropped since they may no longer hold."""
        self.config = URLAnalyzerConfig(**{**self.config.model_dump(), **changes})
        self.clear_cache()
