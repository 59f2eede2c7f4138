"""
URL heuristic tables: suspicious TLDs, protected brands, lookalike characters,
phishing path / parameter vocabularies, shorteners and ports.
"""

import re


SUSPICIOUS_TLDS = {
    'tk', 'ml', 'ga', 'cf', 'gq', 'pw', 'buzz', 'work', 'click', 'link',
    'top', 'xyz', 'club', 'loan', 'download', 'racing',
}

PROTECTED_BRANDS = [
    'google', 'facebook', 'amazon', 'apple', 'microsoft', 'netflix',
    'instagram', 'twitter', 'youtube', 'linkedin', 'paypal', 'ebay', 'adobe',
    'dropbox', 'github', 'visa', 'mastercard', 'americanexpress', 'discover',
    'chase', 'wellsfargo', 'bankofamerica', 'citibank',
    # Regional banks and retailers
    'hbl', 'ubl', 'mcb', 'allied', 'habib', 'meezan', 'alfalah', 'askari',
    'soneri', 'standard', 'alibaba', 'aliexpress', 'daraz', 'walmart',
]

# brand character -> characters an attacker substitutes for it
LOOKALIKE_CHARS = {
    'a': ['@', 'á', 'à', 'â', 'ä', 'ã', 'å', 'α'],
    'e': ['3', 'é', 'è', 'ê', 'ë', 'ε'],
    'i': ['1', 'l', 'í', 'ì', 'î', 'ï', 'ı'],
    'o': ['0', 'ó', 'ò', 'ô', 'ö', 'õ', 'ø'],
    'u': ['ú', 'ù', 'û', 'ü', 'µ'],
    'l': ['1', 'i', 'í', '|'],
    's': ['$', '5', 'š'],
    'g': ['9', 'q'],
    'b': ['d', '8'],
    'c': ['ç', '©'],
    'n': ['ñ', 'η'],
}

# Multi-character sequences that render like a single brand character
LOOKALIKE_SEQUENCES = {
    'rn': 'm',
    'vv': 'w',
    'cl': 'd',
}

SUSPICIOUS_PATHS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'/login', r'/signin', r'/sign-in', r'/account', r'/verify',
        r'/secure', r'/update', r'/confirm', r'/validation',
        r'/authentication', r'/password', r'/banking', r'/wallet',
    )
]

SUSPICIOUS_PARAMS = {
    'password', 'pass', 'pwd', 'credit', 'creditcard', 'cc', 'cvv', 'cvc',
    'ssn', 'social', 'account', 'acct', 'pin', 'otp', 'token', 'auth',
    'session', 'sid',
}

URL_SHORTENERS = {
    'bit.ly', 'goo.gl', 'tinyurl.com', 'ow.ly', 't.co', 'buff.ly', 'is.gd',
    'cli.gs', 'tiny.cc', 'url.ie', 'tr.im', 'twurl.nl', 'short.to',
    'cutt.ly', 'rb.gy', 'shorturl.at',
}

SUSPICIOUS_PORTS = {8080, 8888, 3000, 5000, 8000, 4444, 31337, 12345, 1337, 666, 6666, 6667}

# Hosts that skip heuristic analysis entirely (exact or subdomain match)
KNOWN_SAFE_DOMAINS = [
    'google.com', 'www.google.com',
    'youtube.com', 'www.youtube.com',
    'facebook.com', 'www.facebook.com',
    'github.com', 'www.github.com',
    'stackoverflow.com', 'www.stackoverflow.com',
    'wikipedia.org', 'en.wikipedia.org',
    'reddit.com', 'www.reddit.com',
    'twitter.com', 'www.twitter.com',
    'amazon.com', 'www.amazon.com',
    'microsoft.com', 'www.microsoft.com',
    'apple.com', 'www.apple.com',
    'linkedin.com', 'www.linkedin.com',
    'paypal.com', 'www.paypal.com',
    'netflix.com', 'www.netflix.com',
    'instagram.com', 'www.instagram.com',
    'ebay.com', 'www.ebay.com',
    'adobe.com', 'www.adobe.com',
    'dropbox.com', 'www.dropbox.com',
]

IP_ADDRESS = re.compile(r'^(\d{1,3}\.){3}\d{1,3}$')
EXCESSIVE_DASHES = re.compile(r'-{3,}')
SUSPICIOUS_KEYWORDS = re.compile(
    r'(secure|account|verify|login|update|confirm|validate|banking|wallet|payment)',
    re.IGNORECASE,
)
MIXED_SCRIPTS = re.compile(
    r"[\u0430-\u044f\u0410-\u042f].*[a-zA-Z]|[a-zA-Z].*[\u0430-\u044f\u0410-\u042f]"
)

SEVERITY_WEIGHTS = {'low': 0.2, 'medium': 0.5, 'high': 0.8, 'critical': 1.0}


def levenshtein_distance(s1, s2):
    """Calculate edit distance between two strings"""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = range(len(s2) + 1)
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def has_lookalike_chars(candidate, brand):
    """
    Position-wise comparison: more than 80% of the brand's characters must be
    equal to, or a known lookalike of, the candidate's character at the same
    position. Lengths may differ by at most two.
    """
    if abs(len(candidate) - len(brand)) > 2:
        return False

    matches = 0
    for d, b in zip(candidate, brand):
        if d == b or d in LOOKALIKE_CHARS.get(b, ()):
            matches += 1

    return matches / len(brand) > 0.8


def fold_lookalike_sequences(candidate):
    for fake, real in LOOKALIKE_SEQUENCES.items():
        candidate = candidate.replace(fake, real)
    return candidate
