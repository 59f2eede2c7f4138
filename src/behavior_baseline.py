"""
Website Behavior Baseline Detector

Learns what "normal" looks like for each site over its first visits, then
flags visits that deviate from that locked baseline: scripts and network
domains never seen before, abnormal script counts, and cryptomining
fingerprints.

Profile lifecycle per domain:
    new -> learning (visits 1..4) -> locked (visit 5 onwards, permanent)

Detection for a visit always runs against the baseline as it stood before
that visit is recorded.
"""

import asyncio
import math
import time
from collections import defaultdict

from loguru import logger
from pydantic import ValidationError

from engine_config import BehaviorConfig
from errors import CollectionDenied, StoreError
from threat_models import BehaviorAnomaly, ThreatIndicator, WebsiteBehaviorProfile
from utils import hostname_of


PROFILE_KEY_PREFIX = 'behavior_profile_'

RESTRICTED_SCHEMES = ('chrome://', 'chrome-extension://', 'about:', 'edge://')

MINER_SIGNATURES = ('coinhive', 'coin-hive', 'cryptoloot', 'jsecoin', 'crypto-loot')

CRITICAL_CATEGORIES = ('crypto', 'keylogger')


def profile_key(domain):
    return f'{PROFILE_KEY_PREFIX}{domain}'


class WebsiteBehaviorDetector:
    """Per-domain behavioral baselines and anomaly detection."""

    def __init__(self, collector=None, store=None, config=None, clock=time.time):
        self.collector = collector
        self.store = store
        self.config = config or BehaviorConfig()
        self._clock = clock
        self.profiles = {}
        self._locks = defaultdict(asyncio.Lock)

    # -- async entry points ----------------------------------------------

    async def load_profiles(self):
        """Load every persisted profile from the store."""
        if self.store is None:
            return 0
        try:
            stored = await self.store.items(PROFILE_KEY_PREFIX)
        except StoreError as e:
            logger.error(f"[BehaviorMonitor] Error loading profiles: {e}")
            return 0

        for key, data in stored.items():
            try:
                profile = WebsiteBehaviorProfile(**data)
            except (TypeError, ValidationError) as e:
                logger.warning(f"[BehaviorMonitor] Discarding corrupt profile {key}: {e}")
                continue
            self.profiles[profile.domain] = profile

        logger.info(f"[BehaviorMonitor] Initialized with {len(self.profiles)} profiles")
        return len(self.profiles)

    async def analyze_page_load(self, url, target=None):
        """
        Collect the behavior of a freshly loaded page and compare it to the
        site's baseline.

        Returns:
            BehaviorAnomaly or None. Pages that cannot be inspected, and
            collection failures, return None and leave the profile untouched.
        """
        if url.startswith(RESTRICTED_SCHEMES):
            return None
        domain = hostname_of(url)
        if not domain or self.collector is None:
            return None

        try:
            async with self._locks[domain]:
                try:
                    behavior = await self.collector.collect(target)
                except CollectionDenied as e:
                    logger.debug(f"[BehaviorMonitor] Collection denied for {domain}: {e}")
                    return None

                if behavior is None:
                    logger.debug(f"[BehaviorMonitor] Could not collect behavior for {domain}")
                    return None

                anomaly = self.observe(domain, behavior)
                await self.save_profile(domain)
                return anomaly
        finally:
            if domain not in self.profiles:
                self._release_lock(domain)

    async def save_profile(self, domain):
        """Persist one profile. Returns False when the store rejected the write."""
        profile = self.profiles.get(domain)
        if profile is None or self.store is None:
            return False
        try:
            await self.store.set(profile_key(domain), profile.model_dump(mode='json'))
        except StoreError as e:
            logger.error(f"[BehaviorMonitor] Error saving profile for {domain}: {e}")
            return False
        return True

    async def cleanup_old_profiles(self):
        """Drop profiles whose last visit is older than the retention window."""
        cutoff = self._clock() - self.config.profile_max_age_days * 24 * 3600
        stale = [d for d, p in self.profiles.items() if p.last_visit < cutoff]

        for domain in stale:
            del self.profiles[domain]
            self._release_lock(domain)
            if self.store is not None:
                try:
                    await self.store.remove(profile_key(domain))
                except StoreError as e:
                    logger.error(f"[BehaviorMonitor] Error removing profile for {domain}: {e}")

        if stale:
            logger.info(f"[BehaviorMonitor] Cleaned up {len(stale)} old profiles")
        return len(stale)

    def _release_lock(self, domain):
        lock = self._locks.get(domain)
        if lock is not None and not lock.locked():
            del self._locks[domain]

    # -- synchronous core -------------------------------------------------

    def observe(self, domain, behavior):
        """Detect against the current baseline, then record the visit."""
        profile = self.get_or_create_profile(domain)

        anomaly = None
        if profile.visit_count >= self.config.min_visits_for_baseline:
            anomaly = self.detect_anomalies(profile, behavior)
        else:
            logger.debug(f"[BehaviorMonitor] Building baseline for {domain} "
                         f"({profile.visit_count + 1}/{self.config.min_visits_for_baseline})")

        self.update_profile(profile, behavior)
        return anomaly

    def get_or_create_profile(self, domain):
        if domain not in self.profiles:
            now = self._clock()
            self.profiles[domain] = WebsiteBehaviorProfile(domain=domain, first_seen=now, last_visit=now)
        return self.profiles[domain]

    def update_profile(self, profile, behavior):
        profile.last_visit = self._clock()
        profile.visit_count += 1

        if profile.visit_count >= self.config.min_visits_for_baseline and not profile.baseline_locked:
            profile.baseline_locked = True
            logger.info(f"[BehaviorMonitor] Baseline locked for {profile.domain} - learned normal behavior")

        if profile.baseline_locked:
            return

        for script in behavior.scripts:
            if script.type == 'external' and script.domain:
                profile.script_domains.add(script.domain)
                if script.src:
                    profile.script_urls.add(script.src)
            elif script.type == 'inline' and script.hash:
                profile.script_hashes.add(script.hash)

        for request in behavior.network_requests:
            profile.network_domains.add(request.domain)

        baseline = profile.baseline
        alpha = self.config.ema_alpha
        script_count = len(behavior.scripts)
        request_count = len(behavior.network_requests)

        if not baseline.script_count.mean:
            baseline.script_count.mean = script_count
            baseline.request_count.mean = request_count
        else:
            baseline.script_count.mean = alpha * script_count + (1 - alpha) * baseline.script_count.mean
            baseline.request_count.mean = alpha * request_count + (1 - alpha) * baseline.request_count.mean

        floor = self.config.std_dev_floor
        baseline.script_count.std_dev = max(math.sqrt(abs(script_count - baseline.script_count.mean)), floor)
        baseline.request_count.std_dev = max(math.sqrt(abs(request_count - baseline.request_count.mean)), floor)
        baseline.updated_at = self._clock()

    def detect_anomalies(self, profile, behavior):
        indicators = []

        # 1. scripts never seen during learning
        new_scripts = [s for s in behavior.scripts if self._is_new_script(profile, s)]
        if new_scripts:
            indicators.append(self._make_indicator(
                'new_scripts', 'script',
                f'{len(new_scripts)} new script(s) detected that were not seen before',
                len(new_scripts) * 2,
                [s.src or (f'inline-{s.hash[:8]}' if s.hash else 'inline-unknown') for s in new_scripts],
            ))

        # 2. network domains never seen during learning
        new_domains = []
        for request in behavior.network_requests:
            if request.domain not in profile.network_domains and request.domain not in new_domains:
                new_domains.append(request.domain)
        if new_domains:
            indicators.append(self._make_indicator(
                'new_network_domains', 'network',
                f'Contacting {len(new_domains)} new domain(s)',
                len(new_domains),
                new_domains,
            ))

        # 3. script count deviation
        script_count = len(behavior.scripts)
        stat = profile.baseline.script_count
        deviation = abs((script_count - stat.mean) / (stat.std_dev or 1))
        deviation = min(deviation, self.config.z_score_cap)
        if deviation > self.config.anomaly_threshold:
            indicators.append(self._make_indicator(
                'script_count_deviation', 'script',
                f'Abnormal script count: {script_count} (expected ~{round(stat.mean)})',
                deviation,
                {'current': script_count, 'baseline': stat.mean},
            ))

        # 4. cryptomining
        if detect_crypto_mining(behavior):
            indicators.append(self._make_indicator(
                'cryptomining', 'crypto',
                'Cryptocurrency mining activity detected',
                10,
                'WebGL + suspicious script patterns',
            ))

        # 5. fingerprinting-capable APIs only count alongside other red flags
        if indicators:
            apis = detect_suspicious_apis(behavior)
            if apis:
                indicators.append(self._make_indicator(
                    'suspicious_apis', 'script',
                    f"Suspicious API usage: {', '.join(apis)}",
                    len(apis),
                    apis,
                ))

        if not indicators:
            return None

        max_deviation = max(i.score for i in indicators)
        severity = calculate_severity(indicators)
        anomaly = BehaviorAnomaly(
            target_id=profile.domain,
            target_name=profile.domain,
            detected_at=self._clock(),
            severity=severity,
            confidence=min(max_deviation / 10, 1.0),
            indicators=indicators,
            recommendation='block' if severity == 'critical' else 'warn' if severity == 'high' else 'monitor',
        )
        logger.warning(f"[BehaviorMonitor] Anomaly detected on {profile.domain}: "
                       f"{severity} ({len(indicators)} indicators)")
        return anomaly

    def _is_new_script(self, profile, script):
        if script.type == 'external':
            if script.src and profile.script_urls:
                return script.src not in profile.script_urls
            if script.domain:
                return script.domain not in profile.script_domains
        elif script.type == 'inline' and script.hash:
            return script.hash not in profile.script_hashes
        return False

    def _make_indicator(self, type_, category, description, score, evidence):
        return ThreatIndicator(
            type=type_,
            category=category,
            severity=_score_severity(category, score),
            description=description,
            score=score,
            evidence=evidence,
        )

    # -- accessors --------------------------------------------------------

    def get_profile(self, domain):
        return self.profiles.get(domain)

    def get_all_profiles(self):
        return list(self.profiles.values())


def detect_crypto_mining(behavior):
    """At least two independent mining signals must be present."""
    signals = []

    if behavior.apis.has_webgl:
        signals.append('webgl')

    if any(s.src and any(sig in s.src for sig in MINER_SIGNATURES) for s in behavior.scripts):
        signals.append('known-miner-script')

    if any(any(sig in r.domain for sig in MINER_SIGNATURES) for r in behavior.network_requests):
        signals.append('known-miner-domain')

    has_websocket = any((r.url or '').startswith(('ws://', 'wss://')) for r in behavior.network_requests)
    if has_websocket and behavior.apis.has_webgl:
        signals.append('websocket-webgl-combo')

    return len(signals) >= 2


def detect_suspicious_apis(behavior):
    apis = []
    if behavior.apis.has_rtc:
        apis.append('WebRTC')
    if behavior.apis.has_audio_context:
        apis.append('AudioContext')
    return apis


def calculate_severity(indicators):
    if any(i.category in CRITICAL_CATEGORIES for i in indicators):
        return 'critical'
    max_deviation = max(i.score for i in indicators)
    if max_deviation > 5:
        return 'high'
    if max_deviation > 3:
        return 'medium'
    return 'low'


def _score_severity(category, score):
    if category in CRITICAL_CATEGORIES:
        return 'critical'
    if score > 5:
        return 'high'
    if score > 3:
        return 'medium'
    return 'low'
