"""
Extension Risk Scanner

Keeps a profile for every installed third-party extension and diffs each new
observation against it to catch silent escalations: new API permissions, new
host access, version bumps (possible code swaps), and jumps in the overall
0-100 risk score.

Usage:
    scanner = ExtensionRiskScanner(platform, store)
    await scanner.load_profiles()
    anomalies = await scanner.scan_all()
"""

import time

from loguru import logger
from pydantic import ValidationError

from engine_config import ExtensionScannerConfig
from errors import StoreError
from threat_models import ExtensionAnomaly, ExtensionChange, ExtensionProfile


PROFILE_KEY_PREFIX = 'ext_profile_'

# API permissions that hand an extension control over traffic, other
# extensions, the host OS or screen contents
RISKY_PERMISSIONS = {
    'cookies',
    'webRequest',
    'webRequestBlocking',
    'proxy',
    'debugger',
    'management',
    'nativeMessaging',
    'desktopCapture',
    'tabCapture',
}

ALL_HOSTS_PATTERNS = {'<all_urls>', '*://*/*', 'http://*/*', 'https://*/*'}


def profile_key(extension_id):
    return f'{PROFILE_KEY_PREFIX}{extension_id}'


class ExtensionRiskScanner:
    """Permission / host / version diffing for installed extensions."""

    def __init__(self, platform=None, store=None, config=None, clock=time.time):
        self.platform = platform
        self.store = store
        self.config = config or ExtensionScannerConfig()
        self._clock = clock
        self.profiles = {}

    # -- persistence ------------------------------------------------------

    async def load_profiles(self):
        if self.store is None:
            return 0
        try:
            stored = await self.store.items(PROFILE_KEY_PREFIX)
        except StoreError as e:
            logger.error(f"[ExtensionScanner] Error loading profiles: {e}")
            return 0

        for key, data in stored.items():
            try:
                profile = ExtensionProfile(**data)
            except (TypeError, ValidationError) as e:
                logger.warning(f"[ExtensionScanner] Discarding corrupt profile {key}: {e}")
                continue
            self.profiles[profile.id] = profile

        logger.info(f"[ExtensionScanner] Loaded {len(self.profiles)} extension profiles")
        return len(self.profiles)

    async def save_profile(self, profile):
        if self.store is None:
            return False
        try:
            await self.store.set(profile_key(profile.id), profile.model_dump(mode='json'))
        except StoreError as e:
            logger.error(f"[ExtensionScanner] Error saving profile: {e}")
            return False
        return True

    # -- scanning ---------------------------------------------------------

    async def scan_all(self):
        """Scan every installed extension except ourselves and themes."""
        if self.platform is None:
            return []
        try:
            extensions = await self.platform.list_extensions()
        except Exception as e:
            logger.error(f"[ExtensionScanner] Error scanning extensions: {e}")
            return []

        self_id = getattr(self.platform, 'self_id', None)
        anomalies = []
        for ext in extensions:
            if ext.id == self_id or ext.type == 'theme':
                continue
            anomaly = await self.scan_extension(ext)
            if anomaly:
                anomalies.append(anomaly)

        logger.info(f"[ExtensionScanner] Scanned {len(extensions)} extensions, "
                    f"{len(anomalies)} anomalies")
        return anomalies

    async def scan_extension(self, ext):
        """Diff one extension against its profile, update and persist the profile."""
        anomaly = self.evaluate(ext)
        await self.save_profile(self.profiles[ext.id])
        return anomaly

    def evaluate(self, ext):
        """Synchronous diff; updates the in-memory profile."""
        profile = self.get_or_create_profile(ext)
        changes = []

        # 1. new API permissions
        new_permissions = [p for p in ext.permissions if p not in profile.permissions]
        if new_permissions:
            changes.append(ExtensionChange(
                type='permission',
                description=f"Requested {len(new_permissions)} new permission(s): {', '.join(new_permissions)}",
                old_value=list(profile.permissions),
                new_value=list(ext.permissions),
                risk_level=calculate_permission_risk(new_permissions),
            ))

        # 2. version change
        if profile.version and ext.version != profile.version:
            changes.append(ExtensionChange(
                type='code',
                description=f"Extension updated from v{profile.version} to v{ext.version}",
                old_value=profile.version,
                new_value=ext.version,
                risk_level=3,
            ))

        # 3. new host access
        new_hosts = [h for h in ext.host_permissions if h not in profile.host_permissions]
        if new_hosts:
            all_hosts = any(h in ALL_HOSTS_PATTERNS for h in new_hosts)
            changes.append(ExtensionChange(
                type='permission',
                description=f"Can now access {len(new_hosts)} new website(s): {', '.join(new_hosts)}",
                old_value=list(profile.host_permissions),
                new_value=list(ext.host_permissions),
                risk_level=10 if all_hosts else 5,
            ))

        # 4. overall risk jump
        current_score = self.calculate_risk_score(ext)
        if current_score > profile.risk_score + self.config.risk_increase_threshold:
            changes.append(ExtensionChange(
                type='behavior',
                description=f"Risk score increased significantly: {profile.risk_score} -> {current_score}",
                old_value=profile.risk_score,
                new_value=current_score,
                risk_level=8,
            ))

        self.update_profile(profile, ext, current_score)

        if not changes:
            return None

        max_risk = max(c.risk_level for c in changes)
        severity = calculate_severity(max_risk)
        logger.warning(f"[ExtensionScanner] Anomaly detected in {ext.name}: "
                       f"{severity} ({len(changes)} changes, max risk {max_risk})")

        return ExtensionAnomaly(
            target_id=ext.id,
            target_name=ext.name,
            detected_at=self._clock(),
            severity=severity,
            confidence=min(max_risk / 10, 1.0),
            changes=changes,
            recommendation=get_recommendation(severity, changes),
        )

    def calculate_risk_score(self, ext):
        score = 0
        score += 20 * sum(1 for p in ext.permissions if p in RISKY_PERMISSIONS)

        if any(h in ALL_HOSTS_PATTERNS for h in ext.host_permissions):
            score += 30
        if len(ext.host_permissions) > 10:
            score += 15

        # side-loaded / not from the official store
        if not ext.update_url or self.config.canonical_update_host not in ext.update_url:
            score += 25

        # can observe and correlate all traffic per tab
        if 'webRequest' in ext.permissions and 'tabs' in ext.permissions:
            score += 20

        return min(score, 100)

    def get_or_create_profile(self, ext):
        if ext.id not in self.profiles:
            now = self._clock()
            self.profiles[ext.id] = ExtensionProfile(
                id=ext.id,
                name=ext.name,
                version=ext.version,
                permissions=list(ext.permissions),
                host_permissions=list(ext.host_permissions),
                risk_score=self.calculate_risk_score(ext),
                first_seen=now,
                last_checked=now,
            )
        return self.profiles[ext.id]

    def update_profile(self, profile, ext, risk_score):
        profile.name = ext.name
        profile.version = ext.version
        profile.permissions = list(ext.permissions)
        profile.host_permissions = list(ext.host_permissions)
        profile.risk_score = risk_score
        profile.last_checked = self._clock()

    # -- lifecycle events ---------------------------------------------------

    async def on_installed(self, ext):
        logger.info(f"[ExtensionScanner] New extension installed: {ext.name}")
        return await self.scan_extension(ext)

    async def on_enabled(self, ext):
        logger.info(f"[ExtensionScanner] Extension enabled: {ext.name}")
        return await self.scan_extension(ext)

    async def on_uninstalled(self, extension_id):
        profile = self.profiles.pop(extension_id, None)
        logger.info(f"[ExtensionScanner] Extension uninstalled: {profile.name if profile else extension_id}")
        if self.store is not None:
            try:
                await self.store.remove(profile_key(extension_id))
            except StoreError as e:
                logger.error(f"[ExtensionScanner] Error removing profile: {e}")

    def get_profile(self, extension_id):
        return self.profiles.get(extension_id)

    def get_all_profiles(self):
        return list(self.profiles.values())


def calculate_permission_risk(permissions):
    risk = sum(3 if p in RISKY_PERMISSIONS else 1 for p in permissions)
    return min(risk, 10)


def calculate_severity(max_risk):
    if max_risk >= 9:
        return 'critical'
    if max_risk >= 7:
        return 'high'
    if max_risk >= 4:
        return 'medium'
    return 'low'


def get_recommendation(severity, changes):
    has_permission_changes = any(c.type == 'permission' for c in changes)
    has_critical_change = any(c.risk_level >= 9 for c in changes)

    if severity == 'critical' or has_critical_change:
        return 'uninstall'
    if severity == 'high':
        return 'disable' if has_permission_changes else 'warn'
    if severity == 'medium':
        return 'warn'
    return 'monitor'
