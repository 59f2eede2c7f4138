"""
Threat Engine CLI
Run the URL heuristics and the script pattern blocker from the command line.

Examples:
  python src/analyzer.py url http://paypa1-secure-login.tk/verify?password=x
  python src/analyzer.py urls urls.txt --json
  python src/analyzer.py script suspicious.js --mode strict
  python src/analyzer.py update-db --dest data/phishtank.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from engine import ThreatDetectionEngine
from engine_config import load_config
from errors import CatalogError, ConfigError, FeedUpdateError
from log_config import setup_logging
from threat_db import PHISHTANK_FEED_URL


VERDICT_COLORS = {
    'safe': Fore.GREEN,
    'suspicious': Fore.YELLOW,
    'malicious': Fore.RED,
}

SEVERITY_COLORS = {
    'low': Fore.CYAN,
    'medium': Fore.YELLOW,
    'high': Fore.RED,
    'critical': Fore.RED + Style.BRIGHT,
}

# exit codes
EXIT_OK = 0
EXIT_SUSPICIOUS = 1
EXIT_MALICIOUS = 3
EXIT_ERROR = 4


def print_url_result(result):
    color = VERDICT_COLORS[result.verdict]
    print(f"{color}[{result.verdict.upper()}]{Style.RESET_ALL} {result.url}")
    print(f"   └─ Confidence: {result.confidence * 100:.0f}%")
    print(f"   └─ Reason: {result.reason}")
    for indicator in result.indicators:
        sev = SEVERITY_COLORS[indicator.severity]
        print(f"      • {sev}{indicator.severity.upper():<8}{Style.RESET_ALL} {indicator.description}")


def print_script_result(path, result):
    if not result.is_suspicious:
        print(f"{Fore.GREEN}[✓]{Style.RESET_ALL} {path}: no dangerous patterns")
        return

    action = f"{Fore.RED}BLOCK" if result.should_block else f"{Fore.YELLOW}ALLOW"
    print(f"{action}{Style.RESET_ALL} {path} (confidence {result.confidence * 100:.0f}%)")
    for rule in result.matched_rules:
        sev = SEVERITY_COLORS[rule.severity]
        print(f"   • {sev}{rule.severity.upper():<8}{Style.RESET_ALL} {rule.name} [{rule.id}]")
    for call in result.dynamic_calls:
        print(f"   └─ {call.callee}() at line {call.line}:{call.column}")


def exit_code_for(verdicts):
    if 'malicious' in verdicts:
        return EXIT_MALICIOUS
    if 'suspicious' in verdicts:
        return EXIT_SUSPICIOUS
    return EXIT_OK


def run_url(engine, args):
    verdicts = []
    for url in args.urls:
        result = asyncio.run(engine.check_url(url))
        verdicts.append(result.verdict)
        if args.json:
            print(result.model_dump_json(indent=2))
        else:
            print_url_result(result)
    return exit_code_for(verdicts)


def run_urls(engine, args):
    path = Path(args.file)
    urls = [line.strip() for line in path.read_text(encoding='utf-8').splitlines()
            if line.strip() and not line.startswith('#')]

    results = []
    for url in tqdm(urls, desc="Analyzing URLs", unit="url", disable=args.json):
        results.append(asyncio.run(engine.check_url(url)))

    if args.json:
        print(json.dumps([r.model_dump(mode='json') for r in results], indent=2))
    else:
        flagged = [r for r in results if r.verdict != 'safe']
        for result in flagged:
            print_url_result(result)
        print(f"\n📊 {len(urls)} URLs analyzed, {len(flagged)} flagged")
    return exit_code_for({r.verdict for r in results})


def run_script(engine, args):
    if args.mode:
        engine.update_config({'mode': args.mode})
    path = Path(args.file)
    code = path.read_text(encoding='utf-8', errors='replace')
    result = engine.analyze_script(code, args.source_url or 'inline')

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print_script_result(path, result)
    if result.should_block:
        return EXIT_MALICIOUS
    return EXIT_SUSPICIOUS if result.is_suspicious else EXIT_OK


def run_update_db(engine, args):
    try:
        total = engine.threat_db.update_from_feed(args.dest, feed_url=args.feed_url)
    except FeedUpdateError as e:
        print(f"{Fore.RED}[✗]{Style.RESET_ALL} {e}")
        return EXIT_ERROR
    print(f"{Fore.GREEN}[✓]{Style.RESET_ALL} Saved {total} phishing URLs to {args.dest}")
    return EXIT_OK


def parse_cli_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Client-side threat detection engine',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  nothing found
  1  suspicious
  3  malicious / blocked
  4  error
        """
    )
    parser.add_argument('--config', default='config.json', help='Config file (default: config.json)')
    parser.add_argument('--json', action='store_true', help='Print results as JSON')
    parser.add_argument('--sensitivity', choices=['low', 'medium', 'high'],
                        help='Override URL analyzer sensitivity')
    parser.add_argument('--threat-db', action='append', default=[],
                        help='Known-phishing JSON file (repeatable)')
    parser.add_argument('--rules', action='append', default=[],
                        help='YAML rule pack added to the script catalog (repeatable)')

    sub = parser.add_subparsers(dest='command', required=True)

    p_url = sub.add_parser('url', help='Analyze one or more URLs')
    p_url.add_argument('urls', nargs='+')

    p_urls = sub.add_parser('urls', help='Analyze every URL in a file (one per line)')
    p_urls.add_argument('file')

    p_script = sub.add_parser('script', help='Analyze a JavaScript file')
    p_script.add_argument('file')
    p_script.add_argument('--mode', choices=['strict', 'moderate', 'permissive'])
    p_script.add_argument('--source-url', help='URL the script was served from')

    p_db = sub.add_parser('update-db', help='Download the PhishTank feed')
    p_db.add_argument('--dest', default='data/phishtank.json')
    p_db.add_argument('--feed-url', default=PHISHTANK_FEED_URL)

    return parser.parse_args(argv)


COMMANDS = {
    'url': run_url,
    'urls': run_urls,
    'script': run_script,
    'update-db': run_update_db,
}


def main(argv=None):
    """CLI entry point"""
    args = parse_cli_args(argv)
    colorama_init(autoreset=True)
    setup_logging()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"{Fore.RED}[✗]{Style.RESET_ALL} {e}")
        return EXIT_ERROR

    if args.sensitivity:
        config.url.sensitivity_level = args.sensitivity
    # the CLI never touches the browser host, keep state in memory
    config.storage_dir = None
    config.rule_packs = list(config.rule_packs) + args.rules

    try:
        engine = ThreatDetectionEngine(config)
    except CatalogError as e:
        print(f"{Fore.RED}[✗]{Style.RESET_ALL} {e}")
        return EXIT_ERROR
    engine.threat_db.load(list(config.threat_db_paths) + args.threat_db)

    try:
        return COMMANDS[args.command](engine, args)
    except OSError as e:
        print(f"{Fore.RED}[✗]{Style.RESET_ALL} {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
