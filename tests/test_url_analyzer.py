import pytest

from engine_config import URLAnalyzerConfig
from url_analyzer import (
    URLHeuristicAnalyzer,
    analyze_url_heuristics,
    calculate_threat_score,
    check_typosquatting,
    normalize_url,
)
from url_patterns import has_lookalike_chars, levenshtein_distance


def _types(indicators):
    return [(i.type, i.severity) for i in indicators]


def test_levenshtein():
    assert levenshtein_distance('facebook', 'facebok') == 1
    assert levenshtein_distance('', 'abc') == 3
    assert levenshtein_distance('kitten', 'sitting') == 3


def test_lookalike_chars():
    assert has_lookalike_chars('faceb00k', 'facebook')
    assert has_lookalike_chars('paypa1', 'paypal')
    assert not has_lookalike_chars('apply', 'apple')
    assert not has_lookalike_chars('go', 'google')


def test_normalize_url():
    assert normalize_url('HTTPS://Example.COM/Path/') == 'https://example.com/Path'
    assert normalize_url('https://example.com/') == 'https://example.com'
    assert normalize_url('https://example.com/a?b=1') == 'https://example.com/a?b=1'


def test_lookalike_brand_is_critical():
    indicators = check_typosquatting('faceb00k.com')
    assert ('typosquatting', 'critical') in _types(indicators)
    assert indicators[0].description == 'Uses lookalike characters to mimic facebook'


def test_one_letter_typo_is_high_only():
    indicators = check_typosquatting('facebok.com')
    assert _types(indicators) == [('typosquatting', 'high')]
    assert indicators[0].description == 'Similar to facebook (possible typo)'


def test_brand_own_domain_not_flagged():
    assert check_typosquatting('facebook.com') == []
    assert check_typosquatting('www.facebook.com') == []


@pytest.mark.parametrize('hostname', ['login.paypal.tk', 'secure.paypal.ml', 'login.paypal.com'])
def test_brand_subdomain_is_not_exempt(hostname):
    indicators = check_typosquatting(hostname)
    assert ('typosquatting', 'critical') in _types(indicators)
    assert 'Impersonates paypal' in [i.description for i in indicators]


def test_brand_subdomain_on_throwaway_tld_is_malicious():
    result = URLHeuristicAnalyzer().analyze('http://login.paypal.tk/')
    assert result.verdict == 'malicious'
    assert ('typosquatting', 'critical') in _types(result.indicators)


def test_real_brand_subdomain_is_known_safe():
    result = URLHeuristicAnalyzer().analyze('https://login.paypal.com/signin')
    assert result.verdict == 'safe'
    assert result.indicators == []


def test_brand_embedded_in_other_domain():
    indicators = check_typosquatting('paypal-account-check.com')
    assert [i.description for i in indicators] == ['Impersonates paypal']


def test_ip_address_host():
    indicators = analyze_url_heuristics('http://192.168.10.20/index.html')
    assert ('ip_address', 'high') in _types(indicators)


def test_structural_checks():
    indicators = analyze_url_heuristics('http://a.b.c.d.e.example.com:8080/login?pwd=1')
    types = _types(indicators)
    assert ('excessive_subdomains', 'medium') in types
    assert ('suspicious_path', 'medium') in types
    assert ('suspicious_params', 'high') in types
    assert ('suspicious_port', 'high') in types


def test_homograph_idna():
    # "аpple.com" with a Cyrillic first letter
    indicators = analyze_url_heuristics('http://xn--pple-43d.com/')
    assert ('homograph_attack', 'critical') in _types(indicators)


def test_malformed_url_indicator():
    indicators = analyze_url_heuristics('not a url')
    assert _types(indicators) == [('malformed_url', 'high')]


def test_threat_score_curve():
    assert calculate_threat_score([]) == 0.0
    indicators = analyze_url_heuristics('http://bit.ly/abc')
    assert _types(indicators) == [('url_shortener', 'medium')]
    assert calculate_threat_score(indicators) == pytest.approx(0.5 ** 0.8)


def test_phishing_url_is_malicious():
    analyzer = URLHeuristicAnalyzer()
    result = analyzer.analyze('http://paypa1-secure-login.tk/verify?password=x')
    assert result.verdict == 'malicious'
    assert any(i.severity == 'critical' for i in result.indicators)
    assert result.reason.startswith('Uses lookalike characters to mimic paypal')


@pytest.mark.parametrize('sensitivity', ['low', 'medium', 'high'])
def test_known_safe_domain_at_every_sensitivity(sensitivity):
    analyzer = URLHeuristicAnalyzer(URLAnalyzerConfig(sensitivity_level=sensitivity))
    result = analyzer.analyze('https://mail.google.com/mail/u/0/')
    assert result.verdict == 'safe'
    assert result.confidence == 0
    assert result.indicators == []
    assert result.reason == 'Passed quick safety checks'


def test_malformed_url_is_suspicious():
    result = URLHeuristicAnalyzer().analyze('::::')
    assert result.verdict == 'suspicious'
    assert result.confidence == 0.5


def test_clean_url_is_safe():
    result = URLHeuristicAnalyzer().analyze('https://example.org/docs')
    assert result.verdict == 'safe'
    assert result.reason == 'No suspicious patterns detected'


def test_sensitivity_scales_score():
    url = 'http://bit.ly/abc'
    medium = URLHeuristicAnalyzer().analyze(url).confidence
    low = URLHeuristicAnalyzer(URLAnalyzerConfig(sensitivity_level='low')).analyze(url).confidence
    high = URLHeuristicAnalyzer(URLAnalyzerConfig(sensitivity_level='high')).analyze(url).confidence
    assert low == pytest.approx(medium * 0.8)
    assert high == pytest.approx(min(medium * 1.2, 1.0))


def test_cache_hit_returns_same_result(clock):
    analyzer = URLHeuristicAnalyzer(clock=clock)
    first = analyzer.analyze('http://bit.ly/abc/')
    second = analyzer.analyze('http://BIT.LY/abc')
    assert second is first
    stats = analyzer.get_stats()
    assert stats['total_analyzed'] == 1
    assert stats['cache_hits'] == 1
    assert stats['cache_misses'] == 1
    assert stats['suspicious_count'] == 1


def test_cache_ttl_and_capacity(clock):
    analyzer = URLHeuristicAnalyzer(URLAnalyzerConfig(cache_size=2, cache_ttl=60), clock=clock)
    analyzer.analyze('https://one.example.org')
    analyzer.analyze('https://two.example.org')
    analyzer.analyze('https://three.example.org')
    assert analyzer.cache_size == 2

    clock.advance(61)
    analyzer.analyze('https://three.example.org')
    assert analyzer.get_stats()['cache_hits'] == 0


def test_update_config_clears_cache():
    analyzer = URLHeuristicAnalyzer()
    analyzer.analyze('http://bit.ly/abc')
    analyzer.update_config(block_threshold=0.5)
    assert analyzer.cache_size == 0
    assert analyzer.get_config()['block_threshold'] == 0.5
    assert analyzer.analyze('http://bit.ly/abc').verdict == 'malicious'
