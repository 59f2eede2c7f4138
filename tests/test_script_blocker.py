import pytest

from engine_config import ScriptBlockerConfig
from script_blocker import JSPatternBlocker, find_dynamic_calls


WRITE_SCRIPT = 'document.write("<b>hello</b>")'
MINER_SCRIPT = 'var miner = new CoinHive.Anonymous("site-key"); miner.start();'
SOCKET_SCRIPT = 'var ws = new WebSocket("wss://x.io");'


def _blocker(**config):
    return JSPatternBlocker(config=ScriptBlockerConfig(**config))


def test_clean_script():
    result = _blocker().analyze('console.log("hello")')
    assert not result.is_suspicious
    assert not result.should_block
    assert result.confidence == 0.0


@pytest.mark.parametrize('mode,expected', [('strict', True), ('moderate', False), ('permissive', False)])
def test_medium_match_by_mode(mode, expected):
    result = _blocker(mode=mode).analyze(WRITE_SCRIPT)
    assert result.is_suspicious
    assert [r.id for r in result.matched_rules] == ['injection-document-write']
    assert result.should_block is expected


@pytest.mark.parametrize('mode,expected', [('strict', True), ('moderate', False), ('permissive', False)])
def test_low_match_by_mode(mode, expected):
    result = _blocker(mode=mode).analyze(SOCKET_SCRIPT)
    assert result.is_suspicious
    assert [(r.id, r.severity) for r in result.matched_rules] == [('network-websocket-suspicious', 'low')]
    assert result.should_block is expected


def test_websocket_to_localhost_is_clean():
    assert not _blocker(mode='strict').analyze('new WebSocket("ws://localhost:8080")').is_suspicious


@pytest.mark.parametrize('mode', ['strict', 'moderate', 'permissive'])
def test_critical_match_blocks_in_every_mode(mode):
    assert _blocker(mode=mode).analyze(MINER_SCRIPT).should_block


def test_confidence():
    assert _blocker().analyze(WRITE_SCRIPT).confidence == pytest.approx(0.6)
    assert _blocker().analyze(MINER_SCRIPT).confidence == 1.0

    # four matches: high weight plus the capped 0.3 bonus
    code = 'eval(a); document.write(b); atob(c); navigator.geolocation.watchPosition(d)'
    result = _blocker().analyze(code)
    assert len(result.matched_rules) == 4
    assert result.confidence == pytest.approx(1.0)


def test_allowlisted_source_is_skipped():
    blocker = _blocker()
    result = blocker.analyze(MINER_SCRIPT, 'https://apis.google.com/js/platform.js')
    assert not result.is_suspicious
    assert blocker.analyze(MINER_SCRIPT, 'https://notgoogle.com/x.js').should_block


def test_disabled_blocker_allows_everything():
    result = _blocker(enabled=False).analyze(MINER_SCRIPT)
    assert not result.is_suspicious and not result.should_block


def test_record_block_uses_most_severe_rule():
    blocker = _blocker(mode='strict')
    code = 'document.write(x); eval(y);' + 'a' * 200
    result = blocker.analyze(code, 'https://cdn.example.net/app.js')
    record = blocker.record_block('https://cdn.example.net/app.js', code, result.matched_rules)

    assert record.pattern == 'injection-eval'
    assert record.severity == 'high'
    assert record.reason == 'Dangerous eval() Usage, document.write Injection'
    assert len(record.content) == 103 and record.content.endswith('...')
    assert blocker.history == [record]


def test_history_is_bounded_and_stats_newest_first():
    blocker = _blocker(history_size=3)
    rules = blocker.analyze(MINER_SCRIPT).matched_rules
    for i in range(5):
        blocker.record_block(f'https://site{i}.example/m.js', MINER_SCRIPT, rules)

    assert [r.url for r in blocker.history] == [
        'https://site2.example/m.js', 'https://site3.example/m.js', 'https://site4.example/m.js']
    stats = blocker.get_stats()
    assert stats['total_blocked'] == 3
    assert stats['recent_blocks'][0].url == 'https://site4.example/m.js'
    assert stats['severity_counts'] == {'critical': 3}

    blocker.clear_history()
    assert blocker.get_stats()['total_blocked'] == 0


def test_update_config():
    blocker = _blocker()
    blocker.update_config(mode='strict')
    assert blocker.get_config()['mode'] == 'strict'
    assert blocker.analyze(WRITE_SCRIPT).should_block


def test_dynamic_calls():
    calls = find_dynamic_calls('var a = eval("1 + 1");\nwindow.Function("return 1")();')
    assert [c.callee for c in calls] == ['eval', 'Function']
    assert calls[0].line == 1


def test_dynamic_calls_on_unparseable_code():
    assert find_dynamic_calls('function (((') == []


def test_analysis_reports_dynamic_calls():
    result = _blocker().analyze('eval(payload)')
    assert [c.callee for c in result.dynamic_calls] == ['eval']
