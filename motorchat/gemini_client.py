from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings

logger = logging.getLogger("motorchat.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {"category": HarmCategory.HARM_CATEGORY_HARASSMENT, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
    {"category": HarmCategory.HARM_CATEGORY_HATE_SPEECH, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
    {"category": HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
    {"category": HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT, "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH},
]


class GeminiClient:
    """Completion source for the sales assistant, backed by the Gemini SDK.

    Replies are produced at the configured temperature and token ceiling; bare
    model handles are reused across turns.
    """

    def __init__(self, settings: Settings) -> None:
        """Purpose: Bind the SDK to the dealer's API key and warm the default model.
        Inputs/Outputs: Settings carrying GEMINI_API_KEY and GEMINI_MODEL; returns None.
        Side Effects / State: genai.configure() is process-wide; one model handle is cached.
        Dependencies: google.generativeai; Settings.gemini_* fields.
        Failure Modes: ValueError when the key or model name is blank, before any SDK call.
        If Removed: create_app has no completion source and cannot start.
        Testing Notes: Patch motorchat.gemini_client.genai; a blank key never configures it.
        """
        self._settings = settings
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("Gemini model name is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {
            self._default_model: genai.GenerativeModel(self._default_model)
        }

    def _model(self, model: Optional[str], system_instruction: Optional[str]) -> genai.GenerativeModel:
        # System instructions are bound at construction, so only bare models are cached.
        model_name = _normalize_model_name(model) if model else self._default_model
        if not model_name:
            raise ValueError("Gemini model name is required")
        if system_instruction:
            return genai.GenerativeModel(model_name, system_instruction=system_instruction)
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        return self._models[model_name]

    def _generation_config(self) -> Dict[str, object]:
        return {
            "temperature": self._settings.temperature,
            "max_output_tokens": self._settings.max_output_tokens,
        }

    def generate_content(
        self,
        contents: List[Dict[str, object]],
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        """Purpose: Generate a complete response from structured chat contents.
        Inputs/Outputs: Input is a role/parts list and optional system prompt; returns text.
        Side Effects / State: One blocking SDK call.
        Dependencies: genai.GenerativeModel.generate_content.
        Failure Modes: SDK errors propagate; a response without text returns "".
        If Removed: The non-streaming chat endpoint stops working.
        Testing Notes: Patch genai.GenerativeModel and check the returned text.
        """
        # Single blocking call with the shared generation settings.
        response = self._model(model, system_instruction).generate_content(
            contents,
            generation_config=self._generation_config(),
            safety_settings=DEFAULT_SAFETY_SETTINGS,
        )
        try:
            text: Optional[str] = response.text
        except ValueError:
            logger.warning("gemini response had no text parts")
            return ""
        return (text or "").strip()

    def stream_content(
        self,
        contents: List[Dict[str, object]],
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Iterator[str]:
        """Purpose: Yield response text fragments as the model produces them.
        Inputs/Outputs: Input is a role/parts list and optional system prompt;
            yields non-empty text deltas in arrival order.
        Side Effects / State: Holds an open SDK stream until exhausted or closed.
        Dependencies: genai.GenerativeModel.generate_content(stream=True).
        Failure Modes: Transport/SDK errors propagate to the caller mid-iteration;
            chunks without text parts (e.g. safety stops) are skipped.
        If Removed: The streaming proxy has nothing to relay.
        Testing Notes: Patch the model to return fake chunks with .text.
        """
        # Relay chunk text without buffering the whole response.
        response = self._model(model, system_instruction).generate_content(
            contents,
            generation_config=self._generation_config(),
            safety_settings=DEFAULT_SAFETY_SETTINGS,
            stream=True,
        )
        for chunk in response:
            try:
                text = chunk.text
            except ValueError:
                logger.warning("gemini stream chunk had no text parts")
                continue
            if text:
                yield text


def _normalize_model_name(name: Optional[str]) -> str:
    """Reduce "models/gemini-2.5-flash" or a padded env value to the bare model id."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
