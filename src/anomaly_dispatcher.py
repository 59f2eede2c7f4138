"""
Anomaly Action Dispatcher
Single place where website, extension and ML anomalies turn into actions:

    monitor    log only
    warn       user notification
    block      persist a block record for the site, then warn
    disable    turn the extension off (falls back to warn if refused)
    uninstall  interaction-required prompt with Uninstall / Review buttons

Every anomaly is also written to a bounded, newest-first history and counted
in the persisted stats.
"""

import time
from collections import OrderedDict, deque

from loguru import logger

from engine_config import DispatcherConfig
from errors import ExtensionActionDenied, IconLoadError, StoreError
from threat_models import AnomalyEnvelope, ExtensionAnomaly, NotificationRequest


HISTORY_KEY = 'anomaly_history'
STATS_KEY = 'stats'
BLOCK_KEY_PREFIX = 'blocked_'

DEFAULT_ICON = 'assets/icon.png'
# 1x1 PNG used when the packaged icon cannot be loaded
FALLBACK_ICON = ('data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNk'
                 'YAAAAAYAAjCB0C8AAAAASUVORK5CYII=')

SEVERITY_EMOJI = {
    'low': 'ℹ️',
    'medium': '⚠️',
    'high': '⚠️',
    'critical': '🚨',
}

UNINSTALL_ACTIONS = ['Uninstall Now', 'Review Details']

# unanswered uninstall prompts kept; the oldest is forgotten first
MAX_PENDING_PROMPTS = 50


def block_key(target_id):
    return f'{BLOCK_KEY_PREFIX}{target_id}'


class AnomalyActionDispatcher:
    """Maps an anomaly's recommendation onto collaborator side effects."""

    def __init__(self, notifier=None, platform=None, store=None, config=None, clock=time.time):
        self.notifier = notifier
        self.platform = platform
        self.store = store
        self.config = config or DispatcherConfig()
        self._clock = clock
        self._history = deque(maxlen=self.config.history_size)
        self.anomalies_detected = 0
        self._pending_uninstalls = OrderedDict()  # notification id -> extension id

    async def load_history(self):
        if self.store is None:
            return 0
        try:
            stored = await self.store.get(HISTORY_KEY, [])
            stats = await self.store.get(STATS_KEY, {})
        except StoreError as e:
            logger.error(f"[AnomalyEngine] Error loading history: {e}")
            return 0

        records = []
        for entry in stored[:self.config.history_size]:
            try:
                records.append(AnomalyEnvelope(anomaly=entry).anomaly)
            except ValueError as e:
                logger.warning(f"[AnomalyEngine] Skipping unreadable history entry: {e}")
        # stored newest-first; the deque is kept oldest-first
        self._history = deque(reversed(records), maxlen=self.config.history_size)
        self.anomalies_detected = stats.get('anomalies_detected', 0)
        return len(records)

    async def handle(self, anomaly):
        """Record an anomaly and carry out its recommended action."""
        logger.warning(f"[AnomalyEngine] Detected {anomaly.type} anomaly: target={anomaly.target_name} "
                       f"severity={anomaly.severity} confidence={anomaly.confidence:.2f} "
                       f"recommendation={anomaly.recommendation}")

        await self._record(anomaly)
        await self._increment_count()

        action = anomaly.recommendation
        if action == 'block':
            await self.block_target(anomaly)
        elif action == 'warn':
            await self.warn_user(anomaly)
        elif action == 'disable':
            await self.disable_extension(anomaly)
        elif action == 'uninstall':
            await self.prompt_uninstall(anomaly)
        else:
            logger.info(f"[AnomalyEngine] Monitoring {anomaly.target_name}")
        return action

    # -- actions ----------------------------------------------------------

    async def block_target(self, anomaly):
        record = {
            'domain': anomaly.target_id,
            'reason': 'Anomalous behavior detected',
            'blocked_at': self._clock(),
            'anomaly': anomaly.model_dump(mode='json'),
        }
        if self.store is not None:
            try:
                await self.store.set(block_key(anomaly.target_id), record)
            except StoreError as e:
                logger.error(f"[AnomalyEngine] Error blocking target: {e}")
        logger.warning(f"[AnomalyEngine] Blocked website: {anomaly.target_id}")
        await self.warn_user(anomaly)

    async def warn_user(self, anomaly):
        kind = 'Extension' if anomaly.type == 'extension' else 'Website'
        request = NotificationRequest(
            title=f"{SEVERITY_EMOJI[anomaly.severity]} Suspicious {kind} Detected",
            message=self.build_message(anomaly),
            priority=2 if anomaly.severity == 'critical' else 1,
            require_interaction=anomaly.severity in ('critical', 'high'),
            icon_url=DEFAULT_ICON,
            context={'target_id': anomaly.target_id, 'type': anomaly.type},
        )
        return await self._notify(request)

    def build_message(self, anomaly):
        if anomaly.type == 'extension':
            top = anomaly.changes[0].description if anomaly.changes else 'Unknown change'
            message = f"{anomaly.target_name}: {top}"
            if len(anomaly.changes) > 1:
                message += f" (+{len(anomaly.changes) - 1} more)"
        else:
            if anomaly.type == 'ml-threat':
                details = [f"Machine-learning classifier flagged this site as {anomaly.prediction.category}"]
            else:
                details = [i.description for i in anomaly.indicators]
            top = details[0] if details else 'Unknown behavior'
            message = f"{anomaly.target_name}: {top}"
            if len(details) > 1:
                message += f" (+{len(details) - 1} more indicators)"
            message += f" | Confidence: {round((anomaly.confidence or 0) * 100)}%"
        return message[:self.config.message_max_length]

    async def disable_extension(self, anomaly):
        extension_id = anomaly.target_id
        try:
            if self.platform is None:
                raise ExtensionActionDenied('no extension platform available')
            await self.platform.set_enabled(extension_id, False)
        except Exception as e:
            logger.error(f"[AnomalyEngine] Failed to disable extension {extension_id}: {e}")
            fallback = ExtensionAnomaly(
                target_id=extension_id,
                target_name=anomaly.target_name or extension_id,
                severity='high',
                confidence=1.0,
                changes=getattr(anomaly, 'changes', []),
                recommendation='disable',
            )
            await self.warn_user(fallback)
            return False

        logger.warning(f"[AnomalyEngine] Disabled extension: {extension_id}")
        await self._notify(NotificationRequest(
            title='🛡️ Extension Disabled',
            message=f"{anomaly.target_name} was disabled for your safety",
            priority=2,
            icon_url=DEFAULT_ICON,
        ))
        return True

    async def prompt_uninstall(self, anomaly):
        notification_id = await self._notify(NotificationRequest(
            title='🚨 CRITICAL: Malicious Extension Detected',
            message=f"We strongly recommend uninstalling {anomaly.target_name} immediately. Click to review.",
            priority=2,
            require_interaction=True,
            actions=list(UNINSTALL_ACTIONS),
            icon_url=DEFAULT_ICON,
            context={'target_id': anomaly.target_id, 'type': anomaly.type},
        ))
        if notification_id is not None:
            self._pending_uninstalls[notification_id] = anomaly.target_id
            while len(self._pending_uninstalls) > MAX_PENDING_PROMPTS:
                self._pending_uninstalls.popitem(last=False)
        return notification_id

    async def handle_notification_action(self, notification_id, button_index):
        """Run the button the user chose on an uninstall prompt."""
        extension_id = self._pending_uninstalls.pop(notification_id, None)
        if extension_id is None or self.platform is None:
            return None
        try:
            if button_index == 0:
                await self.platform.uninstall(extension_id)
                return 'uninstall'
            await self.platform.open_details(extension_id)
            return 'review'
        except Exception as e:
            logger.error(f"[AnomalyEngine] Action on {extension_id} failed: {e}")
            return None

    async def _notify(self, request):
        if self.notifier is None:
            logger.info(f"[AnomalyEngine] Notification: {request.title} - {request.message}")
            return None
        try:
            return await self.notifier.notify(request)
        except IconLoadError:
            logger.warning("[AnomalyEngine] Icon load failed, retrying with fallback icon")
            try:
                return await self.notifier.notify(request.model_copy(update={'icon_url': FALLBACK_ICON}))
            except Exception as e:
                logger.error(f"[AnomalyEngine] Fallback notification also failed: {e}")
                return None
        except Exception as e:
            logger.error(f"[AnomalyEngine] Error showing notification: {e}")
            return None

    # -- history / stats --------------------------------------------------

    async def _record(self, anomaly):
        self._history.append(anomaly)
        if self.store is None:
            return
        try:
            await self.store.set(HISTORY_KEY, [a.model_dump(mode='json') for a in self.get_history()])
        except StoreError as e:
            logger.error(f"[AnomalyEngine] Error recording anomaly: {e}")

    async def _increment_count(self):
        self.anomalies_detected += 1
        if self.store is None:
            return
        try:
            await self.store.increment(STATS_KEY, 'anomalies_detected')
        except StoreError as e:
            logger.error(f"[AnomalyEngine] Error updating stats: {e}")

    def update_config(self, config):
        self.config = config
        if self._history.maxlen != config.history_size:
            self._history = deque(self._history, maxlen=config.history_size)

    def get_history(self):
        """Anomalies newest first."""
        return list(reversed(self._history))

    async def clear_history(self):
        self._history.clear()
        if self.store is not None:
            await self.store.set(HISTORY_KEY, [])
        logger.info("[AnomalyEngine] Cleared anomaly history")

    async def get_blocked(self, target_id):
        if self.store is None:
            return None
        return await self.store.get(block_key(target_id))

    def get_stats(self):
        return {
            'anomalies_detected': self.anomalies_detected,
            'history_size': len(self._history),
        }
