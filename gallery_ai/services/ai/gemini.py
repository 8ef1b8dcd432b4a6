"""
Gemini vision-language annotator.

Wraps google-generativeai so the analysis pipeline sees one coded error
type: timeouts become TIMEOUT, 429/quota becomes RATE_LIMIT and anything
else API_ERROR.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import google.generativeai as genai

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.services.ai.errors import (
    ErrorCode,
    PhotoAnalysisError,
    classify_client_error,
)

logger = logging.getLogger(__name__)


class GeminiAnnotator:
    """Google Gemini implementation of the annotator interface."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.model_name = self.config.GEMINI_MODEL
        self._model = None

    @property
    def model(self) -> "genai.GenerativeModel":
        """Lazy-load the Gemini model (API key is only needed on first call)."""
        if self._model is None:
            api_key = self.config.GEMINI_API_KEY
            if not api_key:
                raise PhotoAnalysisError(
                    "GEMINI_API_KEY environment variable is not set",
                    ErrorCode.API_ERROR
                )
            genai.configure(api_key=api_key)
            self._model = genai.GenerativeModel(self.model_name)
            logger.info(f"Gemini annotator initialized with model {self.model_name}")
        return self._model

    async def generate(
        self,
        image_bytes: bytes,
        mime_type: str,
        prompt: str,
        timeout: float = 60.0
    ) -> str:
        """
        Describe an image.

        Args:
            image_bytes: Raw image content
            mime_type: Image MIME type
            prompt: Instruction text
            timeout: Seconds before the call is abandoned

        Returns:
            Raw model text (expected to be JSON)
        """
        contents = [{"mime_type": mime_type, "data": image_bytes}, prompt]
        generation_config = {
            "temperature": 0.2,
            "max_output_tokens": self.config.GEMINI_MAX_OUTPUT_TOKENS,
        }
        return await self._call(contents, generation_config, timeout)

    async def rank(self, prompt: str, timeout: float = 30.0) -> str:
        """Text-only completion used for search re-ranking."""
        generation_config = {
            "temperature": 0.1,
            "max_output_tokens": self.config.GEMINI_MAX_OUTPUT_TOKENS,
        }
        return await self._call(prompt, generation_config, timeout)

    async def _call(
        self,
        contents: Any,
        generation_config: Dict[str, Any],
        timeout: float
    ) -> str:
        model = self.model
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self._generate_sync, model, contents, generation_config, timeout),
                timeout=timeout
            )
        except PhotoAnalysisError:
            raise
        except asyncio.TimeoutError as e:
            raise PhotoAnalysisError(
                f"Request timed out after {timeout:.0f}s",
                ErrorCode.TIMEOUT,
                e
            )
        except Exception as e:
            code = classify_client_error(e)
            if code == ErrorCode.RATE_LIMIT:
                message = "Gemini API rate limit exceeded"
            elif code == ErrorCode.TIMEOUT:
                message = f"Gemini request timed out: {e}"
            else:
                message = f"Gemini API error: {e}"
            raise PhotoAnalysisError(message, code, e)

        if not text:
            raise PhotoAnalysisError("Empty response from Gemini API", ErrorCode.API_ERROR)
        return text

    @staticmethod
    def _generate_sync(
        model: "genai.GenerativeModel",
        contents: Any,
        generation_config: Dict[str, Any],
        timeout: float
    ) -> str:
        response = model.generate_content(
            contents,
            generation_config=generation_config,
            request_options={"timeout": timeout},
        )
        try:
            return response.text
        except ValueError as e:
            # Raised when the candidate was blocked or carries no text parts
            raise PhotoAnalysisError(f"Gemini returned no text: {e}", ErrorCode.API_ERROR, e)


def strip_code_fence(raw: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    text = raw.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
        if text.lower().startswith("json"):
            text = text[4:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()
