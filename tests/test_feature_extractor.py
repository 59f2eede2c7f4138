import pytest

from feature_extractor import FEATURE_COUNT, FEATURE_NAMES, describe_features, extract_features


def test_vector_shape():
    assert FEATURE_COUNT == 20
    assert len(extract_features('https://example.com/')) == 20


def test_phishing_url_features():
    url = 'http://secure-paypa1.tk:8080/login//verify?password=1&x=2'
    features = describe_features(extract_features(url))

    assert features['url_length'] == pytest.approx(len(url) / 200)
    assert features['hostname_length'] == pytest.approx(len('secure-paypa1.tk') / 100)
    assert features['subdomain_count'] == pytest.approx(2 / 5)
    assert features['dash_count'] == pytest.approx(0.1)
    assert features['non_standard_port'] == 1.0
    assert features['uses_https'] == 0.0
    assert features['suspicious_tld'] == 1.0
    assert features['double_slash_in_path'] == 1.0
    assert features['suspicious_keywords'] == 1.0
    assert features['query_param_count'] == pytest.approx(0.1)
    assert features['suspicious_params'] == 1.0
    assert features['domain_has_numbers'] == 1.0


def test_clean_https_url_features():
    features = describe_features(extract_features('https://docs.python.org/3/library/'))
    assert features['uses_https'] == 1.0
    assert features['has_ip_address'] == 0.0
    assert features['suspicious_tld'] == 0.0
    assert features['query_string_length'] == 0.0
    assert features['domain_has_numbers'] == 0.0


def test_scheme_less_input_and_ip_host():
    features = describe_features(extract_features('10.0.0.1/admin'))
    assert features['has_ip_address'] == 1.0
    assert features['uses_https'] == 0.0


def test_extension_feature_needs_literal_backslash():
    assert describe_features(extract_features('http://files.example/setup.exe'))['suspicious_file_extension'] == 0.0
    assert describe_features(extract_features('http://files.example/setup\\.exe'))['suspicious_file_extension'] == 1.0


def test_unparseable_url_gives_zero_vector():
    assert extract_features('http://[::1') == [0.0] * 20
    assert extract_features('') == [0.0] * 20


def test_values_are_clamped():
    features = extract_features('http://example.com/' + 'a' * 500)
    assert all(0.0 <= value <= 1.0 for value in features)
    assert features[FEATURE_NAMES.index('url_length')] == 1.0
