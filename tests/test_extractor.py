import fitz
import pytest

from policyvault.workflows import extractor as extractor_module
from policyvault.workflows.content_recovery import HydrationPayloadRecovery, looks_like_hydration_payload
from policyvault.workflows.errors import ContentTooShort, ContentValidationFailed
from policyvault.workflows.extractor import (
    ContentExtractor,
    extract_title,
    find_policy_terms,
    is_pdf_payload,
    is_policy_url,
)
from bs4 import BeautifulSoup

from helpers import policy_html

URL = "https://example.com/privacy"


def _pdf(lines):
    doc = fitz.open()
    page = doc.new_page()
    for index, line in enumerate(lines):
        page.insert_text((72, 72 + index * 14), line)
    data = doc.tobytes()
    doc.close()
    return data


class StubRecovery:
    name = "stub"

    def __init__(self, text):
        self.text = text
        self.calls = 0

    def recover(self, text, html, url=None):
        self.calls += 1
        return self.text


def test_html_extraction_prefers_main_and_drops_chrome():
    doc = ContentExtractor().extract(policy_html(), "text/html; charset=utf-8", URL, "privacy")

    assert doc.title == "Privacy Policy"
    assert doc.format == "html"
    assert doc.metadata["content_selector"] == "main"
    assert "# Privacy Policy" in doc.normalized_text
    assert "personal data" in doc.normalized_text
    assert "Home" not in doc.normalized_text
    assert "Copyright" not in doc.normalized_text
    assert doc.length == len(doc.normalized_text)
    assert "privacy" in doc.metadata["policy_terms"]


def test_title_falls_back_to_og_title_then_heading():
    og = BeautifulSoup("<html><head><meta property='og:title' content='Acme Privacy'></head></html>", "lxml")
    heading = BeautifulSoup("<html><body><h1>Datenschutz</h1></body></html>", "lxml")
    empty = BeautifulSoup("<html><body></body></html>", "lxml")

    assert extract_title(og) == "Acme Privacy"
    assert extract_title(heading) == "Datenschutz"
    assert extract_title(empty, "Terms of Service") == "Terms of Service"


def test_short_policy_page_raises_too_short():
    extractor = ContentExtractor(recovery_strategies=())

    with pytest.raises(ContentTooShort) as excinfo:
        extractor.extract("<html><body><p>Hi</p></body></html>", "text/html", URL)

    assert excinfo.value.minimum == 100
    assert excinfo.value.length == 2


def test_generic_url_uses_stricter_minimum():
    extractor = ContentExtractor(recovery_strategies=())
    body = "<html><body><p>" + ("Our privacy practices. " * 7) + "</p></body></html>"

    with pytest.raises(ContentTooShort) as excinfo:
        extractor.extract(body, "text/html", "https://example.com/legal")

    assert excinfo.value.minimum == 200


def test_page_without_policy_terms_fails_validation():
    body = "<html><body><main><p>" + ("Boil the water and add the pasta. " * 20) + "</p></main></body></html>"

    with pytest.raises(ContentValidationFailed):
        ContentExtractor(recovery_strategies=()).extract(body, "text/html", "https://example.com/blog/pasta")


def test_policy_url_passes_validation_without_terms():
    body = "<html><body><main><p>" + ("Boil the water and add the pasta. " * 20) + "</p></main></body></html>"

    doc = ContentExtractor(recovery_strategies=()).extract(body, "text/html", "https://example.com/privacy-policy")

    assert doc.metadata["policy_terms"] == []


def test_hydration_payload_is_recovered():
    prose = (
        "What is the Privacy Policy and what does it cover? "
        "We explain how we collect and use your information across our products. "
        "You control the personal data you share with us."
    )
    body = '<html><body><div>{"require":[["ServerJS","handle"]],"content":"' + prose + '</div></body></html>'

    doc = ContentExtractor().extract(body, "text/html", URL)

    assert doc.metadata["recovered_by"] == ["hydration_payload"]
    assert doc.normalized_text.startswith("What is the Privacy Policy")


def test_hydration_recovery_uses_secondary_anchors():
    payload = '{"require":[1,2,3],"x":"We collect the personal data you provide when you sign up."}'

    recovered = HydrationPayloadRecovery(lead=5).recover(payload, "")

    assert recovered is not None
    assert "We collect" in recovered
    assert HydrationPayloadRecovery().recover("Plain policy text", "") is None


def test_looks_like_hydration_payload():
    assert looks_like_hydration_payload('  {"require":[]}')
    assert looks_like_hydration_payload('prefix {"require": []}')
    assert not looks_like_hydration_payload("Privacy Policy")


def test_custom_recovery_strategy_runs_when_text_is_short():
    stub = StubRecovery("This privacy policy covers personal data. " * 10)
    extractor = ContentExtractor(recovery_strategies=[stub])

    doc = extractor.extract("<html><body><p>Loading...</p></body></html>", "text/html", "https://example.com/legal")

    assert stub.calls == 1
    assert doc.metadata["recovered_by"] == ["stub"]


def test_recovery_is_skipped_for_healthy_pages():
    stub = StubRecovery("unused")

    ContentExtractor(recovery_strategies=[stub]).extract(policy_html(), "text/html", URL)

    assert stub.calls == 0


def test_plain_text_bodies_are_kept_verbatim():
    text = "Privacy Policy\n\n\n\n" + ("We process personal data lawfully. " * 10)

    doc = ContentExtractor().extract(text.encode("utf-8"), "text/plain", URL, "terms")

    assert doc.metadata["content_selector"] == "plain_text"
    assert doc.title == "Terms of Service"
    assert "\n\n\n" not in doc.normalized_text


def test_pdf_documents_are_extracted():
    lines = [
        "Privacy Policy",
        "This privacy policy explains how we handle",
        "personal data collected through our products.",
        "We keep records only as long as required.",
    ]

    doc = ContentExtractor().extract(_pdf(lines), "application/pdf", "https://example.com/privacy.pdf", "privacy")

    assert doc.format == "pdf"
    assert doc.title == "Privacy Policy (PDF)"
    assert "personal data" in doc.normalized_text
    assert doc.metadata["pdf_pages"] == 1


def test_pdf_with_too_little_text_is_rejected():
    with pytest.raises(ContentTooShort):
        ContentExtractor().extract(_pdf(["Hi"]), "application/pdf", URL)


def test_password_protected_pdf_is_rejected(monkeypatch):
    monkeypatch.setattr(
        extractor_module,
        "extract_pdf_text",
        lambda raw, url: ("", {"pdf_encrypted": True, "pdf_password_protected": True}),
    )

    with pytest.raises(ContentTooShort) as excinfo:
        ContentExtractor().extract(b"%PDF-1.7 encrypted", "application/pdf", URL)

    assert "password" in str(excinfo.value)


def test_empty_body_is_too_short():
    with pytest.raises(ContentTooShort):
        ContentExtractor().extract(b"   ", "text/html", URL)


def test_url_and_payload_helpers():
    assert is_policy_url("https://example.de/datenschutz")
    assert is_policy_url("https://example.com/legal?doc=privacy-policy")
    assert not is_policy_url("https://example.com/blog")
    assert not is_policy_url(None)
    assert is_pdf_payload(b"%PDF-1.4", "application/octet-stream", None)
    assert is_pdf_payload(b"", "text/html", "https://example.com/policy.PDF")
    assert not is_pdf_payload(b"<html>", "text/html", URL)
    assert find_policy_terms("Wir verarbeiten personenbezogene Daten gemäß DSGVO.") == [
        "personenbezogene daten",
        "dsgvo",
    ]
