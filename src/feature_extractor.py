"""
URL feature extraction for the threat classifier.

The deployed model was trained on exactly these 20 features, in this order
and with this normalization. Changing any of them silently invalidates the
model.
"""

import re
from urllib.parse import urlsplit

from loguru import logger


FEATURE_NAMES = [
    'url_length',
    'hostname_length',
    'path_length',
    'subdomain_count',
    'dash_count',
    'underscore_count',
    'digit_count',
    'has_ip_address',
    'non_standard_port',
    'uses_https',
    'suspicious_tld',
    'has_at_symbol',
    'double_slash_in_path',
    'suspicious_keywords',
    'suspicious_file_extension',
    'query_string_length',
    'query_param_count',
    'suspicious_params',
    'special_char_ratio',
    'domain_has_numbers',
]

FEATURE_COUNT = len(FEATURE_NAMES)

IP_PATTERN = re.compile(r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}')
SUSPICIOUS_TLD = re.compile(r'\.(tk|ml|ga|cf|gq|pw|buzz|club|top)$')
SUSPICIOUS_KEYWORDS = re.compile(r'(login|signin|verify|secure|account|update|confirm|banking|paypal)', re.IGNORECASE)
# The training pipeline matched a literal backslash before the extension
SUSPICIOUS_EXTENSION = re.compile(r'(\\.exe|\\.zip|\\.apk|\\.scr|\\.bat)$', re.IGNORECASE)
SUSPICIOUS_PARAMS = re.compile(r'(password|credit|ssn|account|login)', re.IGNORECASE)
NON_ALNUM = re.compile(r'[^a-zA-Z0-9]')


def extract_features(url):
    """Return the 20-element feature vector for ``url`` (zeros if it cannot be parsed)."""
    try:
        return _extract(url)
    except (ValueError, ZeroDivisionError) as e:
        logger.debug(f"[ML] Feature extraction error for {url!r}: {e}")
        return [0.0] * FEATURE_COUNT


def _extract(url):
    parts = urlsplit(url if url.startswith('http') else f'http://{url}')
    hostname = (parts.hostname or '').lower()
    if not hostname:
        raise ValueError('URL has no host')
    port = parts.port
    pathname = (parts.path or '/').lower()
    search = f'?{parts.query}'.lower() if parts.query else ''

    return [
        min(len(url) / 200, 1.0),
        min(len(hostname) / 100, 1.0),
        min(len(pathname) / 100, 1.0),
        min(len(hostname.split('.')) / 5, 1.0),
        min(hostname.count('-') / 10, 1.0),
        min(hostname.count('_') / 5, 1.0),
        min(sum(c.isdigit() for c in url) / 20, 1.0),
        1.0 if IP_PATTERN.search(hostname) else 0.0,
        1.0 if port is not None and port not in (80, 443) else 0.0,
        1.0 if parts.scheme == 'https' else 0.0,
        1.0 if SUSPICIOUS_TLD.search(hostname) else 0.0,
        1.0 if '@' in url else 0.0,
        1.0 if '//' in pathname else 0.0,
        1.0 if SUSPICIOUS_KEYWORDS.search(url) else 0.0,
        1.0 if SUSPICIOUS_EXTENSION.search(pathname) else 0.0,
        min(len(search) / 100, 1.0),
        min(search.count('&') / 10, 1.0),
        1.0 if SUSPICIOUS_PARAMS.search(search) else 0.0,
        min(len(NON_ALNUM.findall(url)) / len(url), 1.0),
        1.0 if re.search(r'\d', hostname.split('.')[0]) else 0.0,
    ]


def describe_features(vector):
    """Pair each feature value with its name, for logging and debugging."""
    return dict(zip(FEATURE_NAMES, vector))
