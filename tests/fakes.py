"""In-memory stand-ins for the engine's external collaborators."""

from errors import CollectionDenied, ExtensionActionDenied, IconLoadError
from threat_models import ApiUsage, NetworkRequest, ObservedScript, PageBehaviorData


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeCollector:
    """Returns queued observations; None or an exception instance can be queued too."""

    def __init__(self):
        self.queue = []
        self.default = None

    async def collect(self, target):
        result = self.queue.pop(0) if self.queue else self.default
        if isinstance(result, Exception):
            raise result
        return result

    def deny(self):
        self.queue.append(CollectionDenied('restricted page'))


class FakePlatform:
    self_id = 'self-extension-id'

    def __init__(self, extensions=None):
        self.extensions = list(extensions or [])
        self.disabled = []
        self.uninstalled = []
        self.details_opened = []
        self.deny_actions = False
        self.list_error = None

    async def list_extensions(self):
        if self.list_error:
            raise self.list_error
        return list(self.extensions)

    async def set_enabled(self, extension_id, enabled):
        if self.deny_actions:
            raise ExtensionActionDenied('management permission missing')
        if not enabled:
            self.disabled.append(extension_id)

    async def uninstall(self, extension_id):
        if self.deny_actions:
            raise ExtensionActionDenied('user cancelled')
        self.uninstalled.append(extension_id)

    async def open_details(self, extension_id):
        self.details_opened.append(extension_id)


class FakeNotifier:
    def __init__(self, icon_failures=0):
        self.sent = []
        self.icon_failures = icon_failures

    async def notify(self, request):
        if self.icon_failures and not request.icon_url.startswith('data:'):
            self.icon_failures -= 1
            raise IconLoadError(f'cannot load {request.icon_url}')
        self.sent.append(request)
        return f'notification-{len(self.sent)}'


SUSPICIOUS_TLD_FEATURE = 10


class FakeModel:
    """Scores a URL as phishing when its suspicious-TLD feature is set."""

    def __init__(self, phishing_score=0.97, error=None):
        self.phishing_score = phishing_score
        self.error = error
        self.calls = 0
        self.last_vectors = None

    def predict(self, vectors):
        self.calls += 1
        self.last_vectors = vectors
        if self.error:
            raise self.error
        return [[1 - self.phishing_score, self.phishing_score] if v[SUSPICIOUS_TLD_FEATURE] == 1.0
                else [0.9, 0.1] for v in vectors]


def page(external=(), inline=(), requests=(), webgl=False, rtc=False, audio=False):
    """Build PageBehaviorData from plain tuples.

    external: iterable of script URLs
    inline: iterable of content hashes
    requests: iterable of (domain, url) pairs
    """
    scripts = []
    for src in external:
        domain = src.split('/')[2]
        scripts.append(ObservedScript(type='external', src=src, domain=domain))
    for content_hash in inline:
        scripts.append(ObservedScript(type='inline', hash=content_hash, length=120))
    return PageBehaviorData(
        scripts=scripts,
        network_requests=[NetworkRequest(domain=d, type='xmlhttprequest', url=u) for d, u in requests],
        apis=ApiUsage(has_webgl=webgl, has_rtc=rtc, has_audio_context=audio),
    )
