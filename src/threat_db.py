"""
Known-phishing database
Exact URL and hostname blocklists, loaded from local JSON files and
refreshable from the PhishTank "online-valid" CSV feed.

Accepted file formats:
    ["http://bad.example/login", ...]
    {"threats": [{"url": "...", "domain": "..."}, ...]}
"""

import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path

import requests
from loguru import logger

from errors import FeedUpdateError
from utils import hostname_of, load_json, save_json


PHISHTANK_FEED_URL = 'https://data.phishtank.com/data/online-valid.csv'


class ThreatDatabase:
    """In-memory URL / domain sets with JSON loading and feed refresh."""

    def __init__(self):
        self.urls = set()
        self.domains = set()
        self.last_updated = None

    def __len__(self):
        return len(self.urls)

    def load(self, paths):
        """Load every readable file in ``paths``; returns the number of URLs known afterwards."""
        for path in paths:
            path = Path(path)
            if not path.exists():
                logger.debug(f"[ThreatDB] {path} not found, skipping")
                continue
            try:
                data = load_json(path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"[ThreatDB] Cannot read {path}: {e}")
                continue
            self.add_entries(data)

        logger.info(f"[ThreatDB] Loaded {len(self.urls)} URLs / {len(self.domains)} domains")
        return len(self.urls)

    def add_entries(self, data):
        if isinstance(data, list):
            for url in data:
                if isinstance(url, str):
                    self.add_url(url)
        elif isinstance(data, dict):
            for threat in data.get('threats') or []:
                if not isinstance(threat, dict):
                    continue
                if threat.get('url'):
                    self.urls.add(str(threat['url']))
                if threat.get('domain'):
                    self.domains.add(str(threat['domain']).lower())
            if data.get('last_updated'):
                self.last_updated = data['last_updated']

    def add_url(self, url):
        self.urls.add(url)
        hostname = hostname_of(url)
        if hostname:
            self.domains.add(hostname)

    def is_known_phishing(self, url):
        """
        Returns:
            (match, value): match is 'url', 'domain' or None
        """
        if url in self.urls:
            return 'url', url
        hostname = hostname_of(url)
        if hostname and hostname in self.domains:
            return 'domain', hostname
        return None, None

    # -- feed refresh -----------------------------------------------------

    def update_from_feed(self, dest, feed_url=PHISHTANK_FEED_URL, timeout=60):
        """
        Download the PhishTank CSV, merge it into this database and write it
        to ``dest`` as JSON.

        Raises:
            FeedUpdateError: download failed or was rate limited
        """
        logger.info(f"[ThreatDB] Downloading feed {feed_url}")
        try:
            response = requests.get(
                feed_url,
                headers={
                    'User-Agent': 'browser-threat-engine/1.0',
                    'Accept': 'text/csv,text/plain,*/*',
                },
                timeout=timeout,
            )
        except requests.RequestException as e:
            raise FeedUpdateError(f"Feed download failed: {e}") from e

        if response.status_code == 429:
            raise FeedUpdateError('HTTP 429: rate limited by feed provider')
        if response.status_code != 200:
            raise FeedUpdateError(f"HTTP {response.status_code} from feed")

        threats = parse_phishtank_csv(response.text)
        database = {
            'last_updated': datetime.now(timezone.utc).isoformat(),
            'source': 'phishtank',
            'total': len(threats),
            'threats': threats,
        }
        save_json(database, dest)
        self.add_entries(database)
        logger.info(f"[ThreatDB] Update complete: {len(threats)} URLs")
        return len(threats)


def parse_phishtank_csv(text):
    """Extract unique phishing URLs (with host and target brand) from the feed CSV."""
    seen = set()
    threats = []
    for row in csv.DictReader(io.StringIO(text)):
        url = (row.get('url') or '').strip()
        if not url or url in seen:
            continue
        domain = hostname_of(url)
        if not domain:
            continue
        seen.add(url)
        phish_id = (row.get('phish_id') or '').strip()
        threats.append({
            'id': f"phishtank-{phish_id or len(threats) + 1}",
            'url': url,
            'domain': domain,
            'target': (row.get('target') or '').strip(),
        })
    return threats
