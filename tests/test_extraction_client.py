"""Tests for the document-understanding client."""

import base64
from unittest.mock import MagicMock, patch

import httpx
import pytest

from barn_ledger.config import ExtractionConfig
from barn_ledger.errors import ExtractionServiceError, MissingApiCredential, ModelResponseMalformed
from barn_ledger.extraction_client import (
    STRICT_JSON_SUFFIX,
    ExtractionClient,
    build_prompt,
    generic_extraction_prompt,
    parse_json_object,
    strip_code_fences,
)


def api_response(text: str) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"content": [{"type": "text", "text": text}]}
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def extraction_config():
    return ExtractionConfig(api_key="test-key", model="claude-test", max_tokens=800)


class TestResponseParsing:
    """Tests for model text handling."""

    @pytest.mark.parametrize(
        "text",
        [
            '{"invoice_number": "A1"}',
            '```json\n{"invoice_number": "A1"}\n```',
            '```\n{"invoice_number": "A1"}\n```',
            '  ```json{"invoice_number": "A1"}```  ',
        ],
    )
    def test_code_fences_removed(self, text):
        assert parse_json_object(text) == {"invoice_number": "A1"}

    def test_plain_text_untouched(self):
        assert strip_code_fences("  hello ") == "hello"

    def test_not_json(self):
        with pytest.raises(ModelResponseMalformed):
            parse_json_object("The invoice total is $40")

    def test_array_rejected(self):
        with pytest.raises(ModelResponseMalformed, match="JSON object"):
            parse_json_object("[1, 2]")


class TestPrompts:
    """Tests for prompt selection."""

    def test_provider_prompt_wins(self):
        assert build_prompt("Custom.", "farrier") == f"Custom.\n\n{STRICT_JSON_SUFFIX}"

    def test_category_extension(self):
        prompt = build_prompt(None, "stabling")
        assert "stabling_subcategory" in prompt
        assert prompt.endswith("Return strict JSON.")

    def test_unknown_category_generic(self):
        assert generic_extraction_prompt("marketing") == generic_extraction_prompt(None)


class TestExtractionClient:
    """Tests for the HTTP call."""

    @patch("barn_ledger.extraction_client.client.httpx.Client")
    def test_request_body(self, mock_client_cls, extraction_config, sample_pdf_bytes):
        mock_http = MagicMock()
        mock_http.post.return_value = api_response('{"invoice_number": "INV-1"}')
        mock_client_cls.return_value = mock_http

        client = ExtractionClient(extraction_config)
        payload = client.extract(sample_pdf_bytes, "Extract.")

        assert payload == {"invoice_number": "INV-1"}
        url = mock_http.post.call_args.args[0]
        body = mock_http.post.call_args.kwargs["json"]
        headers = mock_http.post.call_args.kwargs["headers"]
        assert url == extraction_config.api_url
        assert headers["x-api-key"] == "test-key"
        assert body["model"] == "claude-test"
        assert body["max_tokens"] == 800
        document, text = body["messages"][0]["content"]
        assert document["source"]["media_type"] == "application/pdf"
        assert base64.b64decode(document["source"]["data"]) == sample_pdf_bytes
        assert text == {"type": "text", "text": "Extract."}

    @patch("barn_ledger.extraction_client.client.httpx.Client")
    def test_missing_api_key(self, mock_client_cls, sample_pdf_bytes):
        mock_http = MagicMock()
        mock_client_cls.return_value = mock_http

        client = ExtractionClient(ExtractionConfig(api_key=None))
        with pytest.raises(MissingApiCredential):
            client.extract(sample_pdf_bytes, "Extract.")
        mock_http.post.assert_not_called()

    @patch("barn_ledger.extraction_client.client.httpx.Client")
    def test_http_error(self, mock_client_cls, extraction_config, sample_pdf_bytes):
        request = httpx.Request("POST", extraction_config.api_url)
        error_response = httpx.Response(529, request=request)
        mock_http = MagicMock()
        mock_http.post.return_value.raise_for_status.side_effect = httpx.HTTPStatusError(
            "overloaded", request=request, response=error_response
        )
        mock_client_cls.return_value = mock_http

        client = ExtractionClient(extraction_config)
        with pytest.raises(ExtractionServiceError, match="HTTP 529"):
            client.extract(sample_pdf_bytes, "Extract.")

    @patch("barn_ledger.extraction_client.client.httpx.Client")
    def test_timeout(self, mock_client_cls, extraction_config, sample_pdf_bytes):
        mock_http = MagicMock()
        mock_http.post.side_effect = httpx.ReadTimeout("timed out")
        mock_client_cls.return_value = mock_http

        client = ExtractionClient(extraction_config)
        with pytest.raises(ExtractionServiceError, match="timed out"):
            client.extract(sample_pdf_bytes, "Extract.")

    @patch("barn_ledger.extraction_client.client.httpx.Client")
    def test_no_text_block(self, mock_client_cls, extraction_config, sample_pdf_bytes):
        response = MagicMock()
        response.json.return_value = {"content": [{"type": "tool_use", "input": {}}]}
        mock_http = MagicMock()
        mock_http.post.return_value = response
        mock_client_cls.return_value = mock_http

        client = ExtractionClient(extraction_config)
        with pytest.raises(ModelResponseMalformed, match="no text payload"):
            client.extract(sample_pdf_bytes, "Extract.")

    @patch("barn_ledger.extraction_client.client.httpx.Client")
    def test_context_manager_closes(self, mock_client_cls, extraction_config):
        mock_http = MagicMock()
        mock_client_cls.return_value = mock_http

        with ExtractionClient(extraction_config):
            pass
        mock_http.close.assert_called_once()
