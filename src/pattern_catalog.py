"""
Pattern Catalog
Versioned, severity-tagged tables of dangerous script constructs.

Two tables live here:
  * SCRIPT_RULES - the full rule set the script blocker matches code against
  * GUARD_RULES  - the reduced three-tier subset evaluated by the interception
                   guard on every eval / Function call

Custom rule packs can be layered on top of the built-in table from YAML:

    version: "2024.1"
    rules:
      - id: custom-skimmer
        name: Card Skimmer
        pattern: "cardnumber.*fetch"
        ignore_case: true
        description: Detects card skimmers posting form data
        severity: critical
        category: malware
"""

import re
from pathlib import Path

import yaml
from loguru import logger
from pydantic import ValidationError

from errors import CatalogError
from threat_models import DetectionRule


CATALOG_VERSION = '1.0.0'

SCRIPT_RULES = [
    # Cryptomining
    {
        'id': 'crypto-coinhive',
        'name': 'CoinHive Crypto Miner',
        'pattern': r'coinhive|cnhv',
        'ignore_case': True,
        'description': 'Detects CoinHive cryptocurrency mining script',
        'severity': 'critical',
        'category': 'cryptomining',
    },
    {
        'id': 'crypto-generic',
        'name': 'Generic Crypto Miner',
        'pattern': r'cryptonight|webminer|crypto-loot|cryptoloot',
        'ignore_case': True,
        'description': 'Detects generic cryptocurrency mining patterns',
        'severity': 'high',
        'category': 'cryptomining',
    },
    {
        'id': 'crypto-monero',
        'name': 'Monero Miner',
        'pattern': r'monero.*miner|xmr.*mine',
        'ignore_case': True,
        'description': 'Detects Monero mining scripts',
        'severity': 'high',
        'category': 'cryptomining',
    },

    # Code injection
    {
        'id': 'injection-eval',
        'name': 'Dangerous eval() Usage',
        'pattern': r'eval\s*\(',
        'description': 'Detects eval() which can execute arbitrary code',
        'severity': 'high',
        'category': 'injection',
    },
    {
        'id': 'injection-function-constructor',
        'name': 'Function Constructor',
        'pattern': r'new\s+Function\s*\(',
        'description': 'Detects the Function constructor which can execute arbitrary code',
        'severity': 'high',
        'category': 'injection',
    },
    {
        'id': 'injection-document-write',
        'name': 'document.write Injection',
        'pattern': r'document\.write\s*\(',
        'description': 'Detects document.write which can inject malicious content',
        'severity': 'medium',
        'category': 'injection',
    },
    {
        'id': 'injection-innerhtml',
        'name': 'innerHTML Manipulation',
        'pattern': r'''\.innerHTML\s*=(?!['"\s]*$)''',
        'description': 'Detects innerHTML assignments that could inject scripts',
        'severity': 'medium',
        'category': 'injection',
    },

    # Obfuscation
    {
        'id': 'obfuscation-base64',
        'name': 'Base64 Encoded Script',
        'pattern': r'atob\s*\(|fromCharCode\s*\(',
        'description': 'Detects base64 decoding or character code obfuscation',
        'severity': 'medium',
        'category': 'obfuscation',
    },
    {
        'id': 'obfuscation-unicode',
        'name': 'Unicode Escape Obfuscation',
        'pattern': r'\\u[0-9a-fA-F]{4}.*\\u[0-9a-fA-F]{4}.*\\u[0-9a-fA-F]{4}',
        'description': 'Detects heavy use of unicode escapes',
        'severity': 'low',
        'category': 'obfuscation',
    },
    {
        'id': 'obfuscation-hex',
        'name': 'Hex Escape Obfuscation',
        'pattern': r'\\x[0-9a-fA-F]{2}.*\\x[0-9a-fA-F]{2}.*\\x[0-9a-fA-F]{2}',
        'description': 'Detects heavy use of hex escapes',
        'severity': 'low',
        'category': 'obfuscation',
    },

    # Malware
    {
        'id': 'malware-keylogger',
        'name': 'Keylogger Pattern',
        'pattern': r'''addEventListener\s*\(\s*['"]keypress['"]|onkeypress|onkeydown''',
        'ignore_case': True,
        'description': 'Detects potential keylogging behavior',
        'severity': 'high',
        'category': 'malware',
    },
    {
        'id': 'malware-clipboard',
        'name': 'Clipboard Access',
        'pattern': r'''navigator\.clipboard|document\.execCommand\s*\(\s*['"]copy['"]''',
        'ignore_case': True,
        'description': 'Detects clipboard access which could steal copied data',
        'severity': 'medium',
        'category': 'malware',
    },
    {
        'id': 'malware-webcam',
        'name': 'Webcam/Microphone Access',
        'pattern': r'getUserMedia|mediaDevices\.getUserMedia',
        'ignore_case': True,
        'description': 'Detects attempts to access webcam or microphone',
        'severity': 'high',
        'category': 'malware',
    },
    {
        'id': 'malware-geolocation',
        'name': 'Geolocation Tracking',
        'pattern': r'navigator\.geolocation|getCurrentPosition',
        'ignore_case': True,
        'description': 'Detects geolocation tracking attempts',
        'severity': 'medium',
        'category': 'malware',
    },

    # Tracking and fingerprinting
    {
        'id': 'tracking-canvas-fingerprint',
        'name': 'Canvas Fingerprinting',
        'pattern': r'canvas.*toDataURL|canvas.*getImageData',
        'ignore_case': True,
        'description': 'Detects canvas fingerprinting for user tracking',
        'severity': 'medium',
        'category': 'tracking',
    },
    {
        'id': 'tracking-webgl-fingerprint',
        'name': 'WebGL Fingerprinting',
        'pattern': r'getParameter.*UNMASKED|webgl.*fingerprint',
        'ignore_case': True,
        'description': 'Detects WebGL fingerprinting techniques',
        'severity': 'medium',
        'category': 'tracking',
    },

    # Network
    {
        'id': 'network-websocket-suspicious',
        'name': 'Suspicious WebSocket',
        'pattern': r'''new\s+WebSocket\s*\(\s*['"]wss?://(?!localhost)''',
        'ignore_case': True,
        'description': 'Detects WebSocket connections to external servers',
        'severity': 'low',
        'category': 'network',
    },
    {
        'id': 'network-external-script',
        'name': 'Dynamic External Script Loading',
        'pattern': r'''createElement\s*\(\s*['"]script['"]\)|\.src\s*=.*http''',
        'ignore_case': True,
        'description': 'Detects dynamic loading of external scripts',
        'severity': 'low',
        'category': 'network',
    },
]


# Interception guard tiers. Every entry is case-insensitive.
GUARD_RULES = [
    # CRITICAL - exfiltration combined with data access
    {'pattern': r'fetch\s*\(.*(cookie|localStorage|sessionStorage)', 'name': 'data exfiltration via fetch', 'severity': 'critical'},
    {'pattern': r'XMLHttpRequest.*cookie', 'name': 'cookie exfiltration via XHR', 'severity': 'critical'},
    # CRITICAL - known miners
    {'pattern': r'coinhive', 'name': 'CoinHive miner', 'severity': 'critical'},
    {'pattern': r'crypto-loot|cryptoloot', 'name': 'CryptoLoot miner', 'severity': 'critical'},
    {'pattern': r'jsecoin', 'name': 'JSEcoin miner', 'severity': 'critical'},
    {'pattern': r'minergate|deepMiner|minr\.pw', 'name': 'crypto miner variant', 'severity': 'critical'},
    # CRITICAL - obfuscated payloads
    {'pattern': r'atob\s*\(.*fetch', 'name': 'obfuscated fetch', 'severity': 'critical'},
    {'pattern': r'fromCharCode.*cookie', 'name': 'obfuscated cookie access', 'severity': 'critical'},
    {'pattern': r'String\.fromCharCode\.apply', 'name': 'bulk char code conversion', 'severity': 'critical'},

    # HIGH - network calls
    {'pattern': r'fetch\s*\(', 'name': 'fetch API call', 'severity': 'high'},
    {'pattern': r'XMLHttpRequest', 'name': 'XMLHttpRequest', 'severity': 'high'},
    {'pattern': r'\.send\s*\(', 'name': 'AJAX send', 'severity': 'high'},
    {'pattern': r'navigator\.sendBeacon', 'name': 'sendBeacon exfiltration', 'severity': 'high'},
    {'pattern': r'WebSocket', 'name': 'WebSocket connection', 'severity': 'high'},
    # HIGH - storage access
    {'pattern': r'document\.cookie', 'name': 'cookie access', 'severity': 'high'},
    {'pattern': r'localStorage', 'name': 'localStorage access', 'severity': 'high'},
    {'pattern': r'sessionStorage', 'name': 'sessionStorage access', 'severity': 'high'},
    {'pattern': r'indexedDB', 'name': 'indexedDB access', 'severity': 'high'},
    # HIGH - DOM manipulation
    {'pattern': r'document\.write', 'name': 'document.write', 'severity': 'high'},
    {'pattern': r'innerHTML\s*=.*<script', 'name': 'innerHTML script injection', 'severity': 'high'},
    {'pattern': r'outerHTML\s*=.*<script', 'name': 'outerHTML script injection', 'severity': 'high'},
    # HIGH - redirects and popups
    {'pattern': r'''location\.href\s*=\s*['"]http''', 'name': 'external redirect', 'severity': 'high'},
    {'pattern': r'window\.open\s*\(', 'name': 'popup window', 'severity': 'high'},
    # HIGH - keylogging
    {'pattern': r'''addEventListener\s*\(\s*['"]key(press|down|up)''', 'name': 'keyboard event listener', 'severity': 'high'},
    {'pattern': r'''addEventListener\s*\(\s*['"]paste''', 'name': 'paste event listener', 'severity': 'high'},
    {'pattern': r'''addEventListener\s*\(\s*['"]copy''', 'name': 'copy event listener', 'severity': 'high'},
    # HIGH - script and iframe injection
    {'pattern': r'''createElement\s*\(\s*['"]script['"]\s*\)''', 'name': 'script element creation', 'severity': 'high'},
    {'pattern': r'\.appendChild.*script', 'name': 'script injection via appendChild', 'severity': 'high'},
    {'pattern': r'\.insertBefore.*script', 'name': 'script injection via insertBefore', 'severity': 'high'},
    {'pattern': r'import\s*\(', 'name': 'dynamic import', 'severity': 'high'},
    {'pattern': r'''createElement\s*\(\s*['"]iframe['"]''', 'name': 'iframe creation', 'severity': 'high'},
    {'pattern': r'contentWindow|contentDocument', 'name': 'iframe content access', 'severity': 'high'},
    # HIGH - form hijacking
    {'pattern': r'form\.submit\s*\(', 'name': 'form auto-submission', 'severity': 'high'},
    {'pattern': r'''\.action\s*=\s*['"]http''', 'name': 'form action hijacking', 'severity': 'high'},

    # MEDIUM - obfuscation
    {'pattern': r'atob\s*\(', 'name': 'base64 decode', 'severity': 'medium'},
    {'pattern': r'fromCharCode', 'name': 'character code obfuscation', 'severity': 'medium'},
    {'pattern': r'unescape\s*\(', 'name': 'unescape', 'severity': 'medium'},
    {'pattern': r'escape\s*\(', 'name': 'escape obfuscation', 'severity': 'medium'},
    # MEDIUM - generic DOM writes
    {'pattern': r'innerHTML\s*=', 'name': 'innerHTML assignment', 'severity': 'medium'},
    {'pattern': r'outerHTML\s*=', 'name': 'outerHTML assignment', 'severity': 'medium'},
    {'pattern': r'\.insertAdjacentHTML', 'name': 'insertAdjacentHTML', 'severity': 'medium'},
    {'pattern': r'\.createContextualFragment', 'name': 'createContextualFragment', 'severity': 'medium'},
    # MEDIUM - fingerprinting
    {'pattern': r'canvas\.toDataURL', 'name': 'canvas fingerprinting', 'severity': 'medium'},
    {'pattern': r'AudioContext|webkitAudioContext', 'name': 'audio fingerprinting', 'severity': 'medium'},
    {'pattern': r'navigator\.plugins', 'name': 'plugin enumeration', 'severity': 'medium'},
    {'pattern': r'screen\.(width|height|availWidth)', 'name': 'screen resolution tracking', 'severity': 'medium'},
    {'pattern': r'''addEventListener\s*\(\s*['"]mouse''', 'name': 'mouse tracking listener', 'severity': 'medium'},
    {'pattern': r'''addEventListener\s*\(\s*['"]click''', 'name': 'click tracking listener', 'severity': 'medium'},
    # MEDIUM - nested dynamic code
    {'pattern': r'eval\s*\(', 'name': 'nested eval', 'severity': 'medium'},
    {'pattern': r'Function\s*\(', 'name': 'Function constructor', 'severity': 'medium'},
    {'pattern': r'setTimeout.*eval', 'name': 'setTimeout with eval', 'severity': 'medium'},
    {'pattern': r'setInterval.*eval', 'name': 'setInterval with eval', 'severity': 'medium'},
    {'pattern': r'''\[['"]constructor['"]\]''', 'name': 'constructor property access', 'severity': 'medium'},
    {'pattern': r'postMessage', 'name': 'cross-origin messaging', 'severity': 'medium'},
    {'pattern': r'\.src\s*=.*\.js', 'name': 'external script loading', 'severity': 'medium'},
]

GUARD_TIERS = ('critical', 'high', 'medium')

# Code shorter than this that mentions none of the trigger words is never inspected
GUARD_TRIVIAL_LENGTH = 30
GUARD_TRIGGER_WORDS = re.compile(r'(fetch|cookie|eval|Function|atob)')


class PatternCatalog:
    """Immutable, ordered collection of detection rules."""

    def __init__(self, rules, version=CATALOG_VERSION):
        self.version = version
        seen = set()
        for rule in rules:
            if rule.id in seen:
                raise CatalogError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)
        self._rules = tuple(rules)

    @classmethod
    def default(cls):
        return cls([_build_rule(entry) for entry in SCRIPT_RULES])

    @classmethod
    def from_yaml(cls, path):
        """Build a catalog containing only the rules of a YAML rule pack."""
        version, rules = _load_rule_pack(path)
        return cls(rules, version=version)

    def extended_with_yaml(self, path):
        """Return a new catalog with a YAML rule pack appended to this one."""
        version, rules = _load_rule_pack(path)
        logger.info(f"[PatternCatalog] Loaded {len(rules)} custom rules from {path}")
        return PatternCatalog(list(self._rules) + rules, version=f"{self.version}+{version}")

    @property
    def rules(self):
        return self._rules

    def __len__(self):
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    def get(self, rule_id):
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def by_severity(self, severity):
        return [r for r in self._rules if r.severity == severity]

    def by_category(self, category):
        return [r for r in self._rules if r.category == category]

    def match(self, text):
        """Return every rule whose pattern occurs in ``text`` in catalog order."""
        return [r for r in self._rules if r.matches(text)]


def load_catalog(rule_packs=()):
    """Built-in catalog with each YAML rule pack layered on in order."""
    catalog = PatternCatalog.default()
    for path in rule_packs:
        catalog = catalog.extended_with_yaml(path)
    return catalog


def compile_guard_rules(entries=None):
    """Compile the interception guard table into (regex, name, severity) tuples."""
    compiled = []
    for entry in entries or GUARD_RULES:
        compiled.append((re.compile(entry['pattern'], re.IGNORECASE), entry['name'], entry['severity']))
    return compiled


def _build_rule(entry):
    try:
        rule = DetectionRule(**entry)
        rule.regex  # compile eagerly so a bad pattern fails at load time
    except ValidationError as e:
        raise CatalogError(f"Invalid rule {entry.get('id', '?')}: {e}") from e
    except re.error as e:
        raise CatalogError(f"Invalid pattern in rule {entry.get('id', '?')}: {e}") from e
    return rule


def _load_rule_pack(path):
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Cannot read rule pack {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get('rules'), list):
        raise CatalogError(f"Rule pack {path} must contain a 'rules' list")

    version = str(data.get('version', 'custom'))
    rules = [_build_rule(entry) for entry in data['rules']]
    return version, rules
