from policyvault.workflows.alternate_urls import (
    DEFAULT_URL_TRANSFORMS,
    UrlTransform,
    english_locale_variants,
    is_localized_url,
    iter_alternates,
    toggle_trailing_slash,
)
from policyvault.workflows.auth_wall_detector import detect_auth_wall, detect_login_page, is_blocked_url


def test_transform_order_is_stable():
    names = [t.name for t in DEFAULT_URL_TRANSFORMS]

    assert names[:5] == ["de_to_en", "de_to_global", "de_to_us", "fr_to_en", "es_to_en"]
    assert names[-3:] == ["index_html", "html_suffix", "toggle_trailing_slash"]


def test_iter_alternates_for_privacy_path():
    pairs = iter_alternates("https://example.com/privacy")

    assert pairs == [
        ("legal_privacy", "https://example.com/legal/privacy"),
        ("about_privacy", "https://example.com/about/privacy"),
        ("privacy_policy_slug", "https://example.com/privacy-policy"),
        ("index_html", "https://example.com/privacy/index.html"),
        ("html_suffix", "https://example.com/privacy.html"),
        ("toggle_trailing_slash", "https://example.com/privacy/"),
    ]


def test_iter_alternates_for_localized_path():
    candidates = dict(iter_alternates("https://example.com/de/datenschutz"))

    assert candidates["de_to_en"] == "https://example.com/en/datenschutz"
    assert candidates["de_to_global"] == "https://example.com/global/datenschutz"
    assert "fr_to_en" not in candidates


def test_iter_alternates_skips_duplicates_and_identity():
    same = UrlTransform("same", lambda url: url)
    dup_a = UrlTransform("a", lambda url: url + "/x")
    dup_b = UrlTransform("b", lambda url: url + "/x")
    broken = UrlTransform("broken", lambda url: 1 / 0)

    assert iter_alternates("https://example.com", [same, dup_a, dup_b, broken]) == [("a", "https://example.com/x")]


def test_toggle_trailing_slash():
    assert toggle_trailing_slash("https://example.com/privacy") == "https://example.com/privacy/"
    assert toggle_trailing_slash("https://example.com/privacy/") == "https://example.com/privacy"
    assert toggle_trailing_slash("https://example.com") == "https://example.com"


def test_is_localized_url():
    assert is_localized_url("https://example.com/de/privacy")
    assert is_localized_url("https://example.com/pt-br/privacidade")
    assert is_localized_url("https://example.com/fr")
    assert not is_localized_url("https://example.com/en/privacy")
    assert not is_localized_url("https://example.com/design/privacy")


def test_english_locale_variants_order():
    assert english_locale_variants("https://example.com/de/privacy") == [
        "https://example.com/en/privacy",
        "https://example.com/us/privacy",
        "https://example.com/en-us/privacy",
    ]
    assert english_locale_variants("https://example.com/pt-br/legal/")[0] == "https://example.com/en/legal/"
    assert english_locale_variants("https://example.com/privacy") == []


def test_blocked_url_patterns():
    assert is_blocked_url("https://accounts.google.com/o/oauth2") == "accounts.google.com"
    assert is_blocked_url("https://example.com/account?ReturnUrl=/privacy") == "returnurl="
    assert is_blocked_url("https://example.com/privacy") is None


def test_login_fingerprints_only_scan_head():
    assert detect_login_page("<p>Please log in to view this page</p>") == "please log in"
    late = "<p>" + ("x" * 6000) + "</p><input type=\"password\">"
    assert detect_login_page(late) is None


def test_detect_auth_wall_verdicts():
    assert detect_auth_wall("https://example.com/privacy", 200, "<p>Privacy</p>")["verdict"] == "unlikely"
    maybe = detect_auth_wall("https://example.com/privacy", 200, "<form action='/auth/start'></form>")
    assert maybe["verdict"] == "maybe"
    likely = detect_auth_wall("https://example.com/sso/start", 200, "")
    assert likely["verdict"] == "likely"
    assert likely["indicators"]["blocked_url_pattern"] == "/sso/"
