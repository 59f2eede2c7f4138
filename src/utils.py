"""
Utility functions for the engine
"""

import json
from pathlib import Path
from urllib.parse import urlsplit


def save_json(data, file_path):
    """Save data to JSON file"""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def load_json(file_path):
    """Load data from JSON file"""
    with open(file_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def hostname_of(url):
    """Lower-cased hostname of a URL, or '' if it has none"""
    try:
        return urlsplit(url).hostname or ''
    except ValueError:
        return ''


def host_matches(hostname, domain):
    """True when hostname is domain itself or one of its subdomains"""
    hostname = hostname.lower()
    domain = domain.lower().lstrip('.')
    return hostname == domain or hostname.endswith('.' + domain)


def natural_join(items):
    """'A', 'A and b', 'A, b, and c' - later items are lower-cased"""
    if not items:
        return ''
    if len(items) == 1:
        return items[0]
    rest = [item.lower() for item in items[1:]]
    if len(items) == 2:
        return f"{items[0]} and {rest[0]}"
    return f"{items[0]}, {', '.join(rest[:-1])}, and {rest[-1]}"


def truncate(text, limit, suffix=''):
    """Cut text to limit characters, appending suffix only when cut"""
    if len(text) <= limit:
        return text
    return text[:limit] + suffix
