"""
Threat Detection Engine
Wires the detectors, the dispatcher and the collaborators together and
exposes the message handlers the browser host (or the web API) calls:

    engine = ThreatDetectionEngine(config, collector=..., platform=..., notifier=...)
    await engine.start()
    result = await engine.check_url('http://paypa1-secure-login.tk/verify')
"""

import asyncio
import time
from collections import deque
from typing import Optional

from loguru import logger

from anomaly_dispatcher import AnomalyActionDispatcher
from behavior_baseline import WebsiteBehaviorDetector
from collaborators import BehaviorCollector, ExtensionPlatform, KeyValueStore, Notifier, ThreatModel
from engine_config import EngineConfig, ScriptBlockerConfig
from extension_scanner import ExtensionRiskScanner
from interception_guard import InterceptionGuard
from ml_signal import MLThreatSignal
from pattern_catalog import PatternCatalog, load_catalog
from profile_store import create_store
from script_blocker import JSPatternBlocker
from threat_db import ThreatDatabase
from url_analyzer import URLHeuristicAnalyzer
from utils import host_matches, hostname_of


class ThreatDetectionEngine:
    """Explicitly constructed component graph plus message handlers."""

    def __init__(self,
                 config: Optional[EngineConfig] = None,
                 collector: Optional[BehaviorCollector] = None,
                 platform: Optional[ExtensionPlatform] = None,
                 notifier: Optional[Notifier] = None,
                 model: Optional[ThreatModel] = None,
                 store: Optional[KeyValueStore] = None,
                 catalog: Optional[PatternCatalog] = None,
                 clock=time.time):
        self.config = config or EngineConfig()
        self.store = store if store is not None else create_store(self.config.storage_dir)
        self.catalog = catalog or load_catalog(self.config.rule_packs)
        self._clock = clock

        self.url_analyzer = URLHeuristicAnalyzer(self.config.url, clock=clock)
        self.script_blocker = JSPatternBlocker(self.catalog, self._script_config())
        self.guard = InterceptionGuard(self.script_blocker, on_block=self.script_blocked)
        self.behavior = WebsiteBehaviorDetector(collector, self.store, self.config.behavior, clock=clock)
        self.extensions = ExtensionRiskScanner(platform, self.store, self.config.extensions, clock=clock)
        self.dispatcher = AnomalyActionDispatcher(notifier, platform, self.store, self.config.dispatcher,
                                                  clock=clock)
        self._model = model
        self.ml = MLThreatSignal(model, clock=clock) if self.config.ml_enabled else None
        self.threat_db = ThreatDatabase()

        self.stats = {'threats_blocked': 0, 'scripts_blocked': 0}
        self.recent_threats = deque(maxlen=self.config.recent_threats_size)
        self._sweep_task = None

    def _script_config(self):
        # engine-level switch and allow-list override the blocker section
        return ScriptBlockerConfig(**{
            **self.config.script.model_dump(),
            'enabled': self.config.enabled,
            'allowlist': self.config.allowlist or self.config.script.allowlist,
        })

    # -- lifecycle --------------------------------------------------------

    async def start(self):
        """Load persisted state, run a first extension scan and schedule the sweep."""
        logger.info("[Engine] Initializing threat detection engine")
        await self.behavior.load_profiles()
        await self.extensions.load_profiles()
        await self.dispatcher.load_history()
        if self.config.threat_db_paths:
            self.threat_db.load(self.config.threat_db_paths)

        await self.run_periodic_sweep()
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("[Engine] Initialized")

    async def stop(self):
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("[Engine] Stopped")

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.config.extensions.scan_interval_hours * 3600)
            await self.run_periodic_sweep()

    async def run_periodic_sweep(self):
        """Scan all extensions and drop stale behavior profiles."""
        anomalies = []
        try:
            anomalies = await self.extensions.scan_all()
            for anomaly in anomalies:
                await self.dispatcher.handle(anomaly)
        except Exception as e:
            logger.error(f"[Engine] Extension sweep failed: {e}")
        try:
            await self.behavior.cleanup_old_profiles()
        except Exception as e:
            logger.error(f"[Engine] Profile cleanup failed: {e}")
        return anomalies

    # -- URL handling -----------------------------------------------------

    def is_allowlisted(self, url):
        hostname = hostname_of(url)
        return bool(hostname) and any(host_matches(hostname, d) for d in self.config.allowlist)

    async def check_url(self, url):
        """Heuristic verdict, elevated by the known-phishing DB, with the ML signal dispatched."""
        result = self.url_analyzer.analyze(url)

        match, value = self.threat_db.is_known_phishing(url)
        if match:
            result = result.model_copy(update={
                'verdict': 'malicious',
                'confidence': max(result.confidence, 0.95),
                'reason': f"Known phishing {match}: {value}",
            })

        if self.ml is not None and self.ml.is_ready:
            anomaly = self.ml.analyze_url(url)
            if anomaly is not None:
                try:
                    await self.dispatcher.handle(anomaly)
                except Exception as e:
                    logger.error(f"[Engine] Failed to dispatch ML anomaly: {e}")

        if result.verdict != 'safe':
            self.stats['threats_blocked'] += 1
            self._record_threat({
                'kind': 'url',
                'url': result.url,
                'verdict': result.verdict,
                'reason': result.reason,
                'timestamp': result.timestamp,
            })
            logger.warning(f"[Engine] {result.verdict.upper()}: {url}")
        return result

    async def on_navigation(self, url):
        """Main-frame navigation; returns None when the page is not checked."""
        if not self.config.enabled or self.is_allowlisted(url):
            return None
        return await self.check_url(url)

    async def on_page_complete(self, url, target=None):
        if not self.config.enabled:
            return None
        try:
            anomaly = await self.behavior.analyze_page_load(url, target)
        except Exception as e:
            logger.error(f"[Engine] Behavior analysis failed for {url}: {e}")
            return None
        if anomaly is not None:
            await self.dispatcher.handle(anomaly)
        return anomaly

    # -- scripts ----------------------------------------------------------

    def analyze_script(self, code, source_url='inline'):
        """Analyze a script and record it when it is blocked."""
        result = self.script_blocker.analyze(code, source_url)
        if result.should_block:
            record = self.script_blocker.record_block(source_url, code, result.matched_rules)
            self._count_script_block(record)
        return result

    def script_blocked(self, record):
        """A block decided by the in-page interception guard."""
        self.script_blocker.record_external_block(record)
        self._count_script_block(record)
        return record

    def intercept_code(self, code, method='eval', source_url='inline'):
        """Guard decision for code reaching eval() or the Function constructor."""
        return self.guard.inspect_code(code, method, source_url)

    def intercept_markup(self, html, method='innerHTML', source_url='inline'):
        return self.guard.inspect_markup(html, method, source_url)

    def _count_script_block(self, record):
        self.stats['scripts_blocked'] += 1
        self._record_threat({
            'kind': 'script',
            'url': record.url,
            'verdict': record.severity,
            'reason': record.reason,
            'timestamp': record.timestamp,
        })

    # -- extensions -------------------------------------------------------

    async def _dispatch_extension(self, anomaly):
        if anomaly is not None:
            await self.dispatcher.handle(anomaly)
        return anomaly

    async def scan_extension(self, ext):
        return await self._dispatch_extension(await self.extensions.scan_extension(ext))

    async def on_extension_installed(self, ext):
        return await self._dispatch_extension(await self.extensions.on_installed(ext))

    async def on_extension_enabled(self, ext):
        return await self._dispatch_extension(await self.extensions.on_enabled(ext))

    async def on_extension_uninstalled(self, extension_id):
        await self.extensions.on_uninstalled(extension_id)

    # -- notifications / block records --------------------------------------

    async def on_notification_action(self, notification_id, button_index):
        """A button was pressed on an uninstall prompt; returns the action taken or None."""
        return await self.dispatcher.handle_notification_action(notification_id, button_index)

    async def get_block_record(self, url):
        """Block record stored for a site, looked up by URL or bare hostname."""
        return await self.dispatcher.get_blocked(hostname_of(url) or url)

    # -- stats / config ---------------------------------------------------

    def _record_threat(self, entry):
        self.recent_threats.appendleft(entry)

    def get_stats(self):
        return {
            **self.stats,
            'anomalies_detected': self.dispatcher.anomalies_detected,
            'recent_threats': list(self.recent_threats),
            'url_analyzer': self.url_analyzer.get_stats(),
            'script_blocker': {
                k: v for k, v in self.script_blocker.get_stats().items() if k != 'recent_blocks'
            },
            'behavior_profiles': len(self.behavior.profiles),
            'extension_profiles': len(self.extensions.profiles),
            'known_phishing_urls': len(self.threat_db),
        }

    def get_config(self):
        return self.config.model_dump()

    def update_config(self, patch):
        """
        Apply a partial config update. Top-level ``mode`` is accepted as a
        shorthand for ``script.mode``. ``storage_dir`` and ``threat_db_paths``
        are read at startup only.

        Raises:
            pydantic.ValidationError: the patched config is invalid
            CatalogError: a new rule pack cannot be loaded
        """
        patch = dict(patch)
        data = self.config.model_dump()
        if 'mode' in patch:
            data['script']['mode'] = patch.pop('mode')
        for key, value in patch.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key].update(value)
            else:
                data[key] = value

        config = EngineConfig(**data)
        if config.rule_packs != self.config.rule_packs:
            self.catalog = load_catalog(config.rule_packs)
            self.script_blocker.catalog = self.catalog
        self.config = config

        self.script_blocker.update_config(**self._script_config().model_dump())
        if self.url_analyzer.config != config.url:
            self.url_analyzer.update_config(**config.url.model_dump())
        self.behavior.config = config.behavior
        self.extensions.config = config.extensions
        self.dispatcher.update_config(config.dispatcher)

        if not config.ml_enabled:
            self.ml = None
        elif self.ml is None:
            self.ml = MLThreatSignal(self._model, clock=self._clock)
        if self.recent_threats.maxlen != config.recent_threats_size:
            self.recent_threats = deque(self.recent_threats, maxlen=config.recent_threats_size)

        logger.info(f"[Engine] Config updated: enabled={self.config.enabled} "
                    f"mode={self.config.script.mode}")
        return self.get_config()
