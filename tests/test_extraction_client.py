"""Extraction webhook client with requests mocked out."""

import base64
from unittest import mock

import pytest
import requests

from extraction_client import (
    ExtractionParseError,
    ExtractionServiceError,
    decode_base64_pdf,
    extract_invoice,
    normalize_extraction,
    parse_webhook_response,
    post_pdf_to_webhook,
)


def _response(status=200, text="{}"):
    response = mock.Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    return response


class TestParseWebhookResponse:
    def test_plain_object(self):
        assert parse_webhook_response('{"line_items": []}') == {"line_items": []}

    def test_list_wrapper_yields_first_element(self):
        assert parse_webhook_response('[{"invoice": {"number": "1"}}, {"x": 1}]') == {"invoice": {"number": "1"}}

    def test_markdown_fences_stripped(self):
        assert parse_webhook_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose_recovered(self):
        assert parse_webhook_response('Here you go: {"a": 1} hope that helps') == {"a": 1}

    @pytest.mark.parametrize("raw", ["", "   ", "no json here", "[]", '"string"', "{broken"])
    def test_unusable_output(self, raw):
        with pytest.raises(ExtractionParseError):
            parse_webhook_response(raw)


class TestNormalizeExtraction:
    def test_missing_sections_become_empty(self):
        data = normalize_extraction({"line_items": []})
        assert data["invoice"] == {"number": None, "date": None}
        assert data["seller"] == {"name": None, "gstin": None}
        assert data["totals"] == {}
        assert data["line_items"] == []

    def test_values_trimmed_and_extra_keys_kept(self):
        data = normalize_extraction(
            {"invoice": {"number": " GST/24/001 ", "date": ""}, "line_items": [], "notes": "x"}
        )
        assert data["invoice"]["number"] == "GST/24/001"
        assert data["invoice"]["date"] is None
        assert data["notes"] == "x"

    def test_line_items_passed_through_for_validation(self):
        assert normalize_extraction({})["line_items"] is None


class TestPostPdf:
    def test_posts_multipart_file(self):
        with mock.patch("extraction_client.requests.post", return_value=_response()) as post:
            post_pdf_to_webhook(b"%PDF", "http://hook", timeout=5)
        _, kwargs = post.call_args
        assert post.call_args.args[0] == "http://hook"
        assert kwargs["files"] == {"file": ("invoice.pdf", b"%PDF", "application/pdf")}
        assert kwargs["timeout"] == 5

    def test_transport_error(self):
        with mock.patch("extraction_client.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(ExtractionServiceError):
                post_pdf_to_webhook(b"%PDF", "http://hook")

    def test_missing_url(self):
        with pytest.raises(ExtractionServiceError):
            post_pdf_to_webhook(b"%PDF", "")


class TestExtractInvoice:
    def test_success(self, tmp_path):
        pdf = tmp_path / "inv.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        body = '[{"invoice": {"number": "INV-1"}, "line_items": [{"sku": "A", "quantity": 2}]}]'
        with mock.patch("extraction_client.requests.post", return_value=_response(text=body)):
            data = extract_invoice(pdf, "http://hook")
        assert data["invoice"]["number"] == "INV-1"
        assert data["line_items"] == [{"sku": "A", "quantity": 2}]

    def test_non_ok_status(self, tmp_path):
        pdf = tmp_path / "inv.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        with mock.patch("extraction_client.requests.post", return_value=_response(status=500, text="oops")):
            with pytest.raises(ExtractionServiceError) as excinfo:
                extract_invoice(pdf, "http://hook")
        assert excinfo.value.status_code == 500

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            extract_invoice(tmp_path / "missing.pdf", "http://hook")


class TestDecodeBase64:
    def test_bare_and_data_url(self):
        encoded = base64.b64encode(b"%PDF-1.4").decode()
        assert decode_base64_pdf(encoded) == b"%PDF-1.4"
        assert decode_base64_pdf(f"data:application/pdf;base64,{encoded}") == b"%PDF-1.4"

    def test_invalid(self):
        with pytest.raises(ExtractionParseError):
            decode_base64_pdf("not base64!!")
