"""tests/test_gemini_client.py

Unit tests for GeminiClient with the google.generativeai module patched out.
"""

from __future__ import annotations

# Standard Library
import dataclasses
from types import SimpleNamespace
from unittest.mock import Mock, PropertyMock, patch

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.gemini_client import GeminiClient, _normalize_model_name

CONTENTS = [{"role": "user", "parts": [{"text": "hi"}]}]


def _textless_chunk() -> Mock:
    chunk = Mock()
    type(chunk).text = PropertyMock(side_effect=ValueError("no parts"))
    return chunk


class TestGeminiClient:
    """Test suite for GeminiClient."""

    @patch("motorchat.gemini_client.genai")
    def test_missing_key_raises(self, mock_genai: Mock, settings) -> None:
        with pytest.raises(ValueError):
            GeminiClient(dataclasses.replace(settings, gemini_api_key=""))
        mock_genai.configure.assert_not_called()

    @patch("motorchat.gemini_client.genai")
    def test_configures_sdk(self, mock_genai: Mock, settings) -> None:
        GeminiClient(dataclasses.replace(settings, gemini_model="models/gemini-2.5-flash"))
        mock_genai.configure.assert_called_once_with(api_key="test-key")
        mock_genai.GenerativeModel.assert_called_once_with("gemini-2.5-flash")

    @patch("motorchat.gemini_client.genai")
    def test_generate_content(self, mock_genai: Mock, settings) -> None:
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.return_value = SimpleNamespace(text="  We have two.  ")

        client = GeminiClient(settings)
        assert client.generate_content(CONTENTS, system_instruction="You are Harris.") == "We have two."

        mock_genai.GenerativeModel.assert_called_with("gemini-2.5-flash", system_instruction="You are Harris.")
        kwargs = model.generate_content.call_args.kwargs
        assert kwargs["generation_config"] == {"temperature": 0.7, "max_output_tokens": 600}

    @patch("motorchat.gemini_client.genai")
    def test_generate_content_without_text(self, mock_genai: Mock, settings) -> None:
        mock_genai.GenerativeModel.return_value.generate_content.return_value = _textless_chunk()
        assert GeminiClient(settings).generate_content(CONTENTS) == ""

    @patch("motorchat.gemini_client.genai")
    def test_stream_skips_textless_chunks(self, mock_genai: Mock, settings) -> None:
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.return_value = iter(
            [SimpleNamespace(text="Hello "), _textless_chunk(), SimpleNamespace(text=""), SimpleNamespace(text="there")]
        )

        chunks = list(GeminiClient(settings).stream_content(CONTENTS))
        assert chunks == ["Hello ", "there"]
        assert model.generate_content.call_args.kwargs["stream"] is True


@pytest.mark.parametrize(
    "name, expected",
    [("models/gemini-2.5-flash", "gemini-2.5-flash"), ("  gemini-pro ", "gemini-pro"), ("", ""), (None, "")],
)
def test_normalize_model_name(name, expected: str) -> None:
    assert _normalize_model_name(name) == expected
