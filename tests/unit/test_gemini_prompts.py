import asyncio
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from gallery_ai.schemas.search import SearchCandidate
from gallery_ai.services.ai.errors import ErrorCode, PhotoAnalysisError
from gallery_ai.services.ai.gemini import GeminiAnnotator, strip_code_fence
from gallery_ai.services.ai.prompts import build_photo_analysis_prompt, build_rank_prompt, truncate


class TestPrompts:

    def test_prompt_with_cv_faces(self):
        prompt = build_photo_analysis_prompt([{
            "face_id": "face_1",
            "position": {"x": 0.25, "y": 0.1, "width": 0.2, "height": 0.3},
            "age_range": "adult",
            "expression": "smiling",
        }])

        assert "exactly 1 face(s)" in prompt
        assert "- face_1: x=0.250, y=0.100, width=0.200, height=0.300" in prompt
        assert "do NOT move, resize, add or remove boxes" in prompt
        assert "Include ALL visible people" not in prompt

    def test_prompt_without_cv_faces(self):
        prompt = build_photo_analysis_prompt([])

        assert "Include ALL visible people" in prompt
        assert '"faceId": "face_1"' in prompt

    def test_rank_prompt(self):
        candidates = [
            SearchCandidate(photo_id="p-1", description="x" * 400, search_tags=[f"t{i}" for i in range(15)]),
            SearchCandidate(photo_id="p-2", description=None, search_tags=[]),
        ]

        prompt = build_rank_prompt("first kiss", candidates)

        assert '"first kiss"' in prompt
        assert "[0] Photo p-1: " + "x" * 297 + "..." in prompt
        assert "t9" in prompt and "t10" not in prompt
        assert "[1] Photo p-2: No description" in prompt

    def test_truncate(self):
        assert truncate(None, 10) == ""
        assert truncate("short", 10) == "short"
        assert truncate("abcdefghijkl", 10) == "abcdefg..."

    @pytest.mark.parametrize("raw,expected", [
        ('{"a": 1}', '{"a": 1}'),
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n[1]\n```', '[1]'),
        ('  ```JSON\n{}```  ', '{}'),
    ])
    def test_strip_code_fence(self, raw, expected):
        assert strip_code_fence(raw) == expected


class TestGeminiAnnotator:

    def _annotator(self, test_settings, model):
        annotator = GeminiAnnotator(config=test_settings.model_copy(update={"GEMINI_API_KEY": "key"}))
        annotator._model = model
        return annotator

    def test_generate_returns_text(self, test_settings):
        model = MagicMock()
        model.generate_content.return_value.text = '{"description": "x"}'
        annotator = self._annotator(test_settings, model)

        text = asyncio.run(annotator.generate(b"img", "image/png", "describe", timeout=5))

        assert text == '{"description": "x"}'
        contents = model.generate_content.call_args.args[0]
        assert contents[0] == {"mime_type": "image/png", "data": b"img"}
        assert contents[1] == "describe"

    def test_missing_api_key(self, test_settings):
        annotator = GeminiAnnotator(config=test_settings)

        with pytest.raises(PhotoAnalysisError) as exc_info:
            asyncio.run(annotator.rank("prompt"))
        assert exc_info.value.code == ErrorCode.API_ERROR

    @pytest.mark.parametrize("error,code", [
        (google_exceptions.ResourceExhausted("quota exceeded"), ErrorCode.RATE_LIMIT),
        (google_exceptions.DeadlineExceeded("deadline"), ErrorCode.TIMEOUT),
        (google_exceptions.InternalServerError("boom"), ErrorCode.API_ERROR),
    ])
    def test_errors_are_coded(self, test_settings, error, code):
        model = MagicMock()
        model.generate_content.side_effect = error
        annotator = self._annotator(test_settings, model)

        with pytest.raises(PhotoAnalysisError) as exc_info:
            asyncio.run(annotator.rank("prompt"))
        assert exc_info.value.code == code

    def test_empty_text_is_api_error(self, test_settings):
        model = MagicMock()
        model.generate_content.return_value.text = ""
        annotator = self._annotator(test_settings, model)

        with pytest.raises(PhotoAnalysisError) as exc_info:
            asyncio.run(annotator.rank("prompt"))
        assert exc_info.value.code == ErrorCode.API_ERROR

    def test_slow_call_times_out(self, test_settings, mocker):
        model = MagicMock()
        annotator = self._annotator(test_settings, model)

        async def never_finishes(*args, **kwargs):
            await asyncio.Event().wait()

        mocker.patch("gallery_ai.services.ai.gemini.asyncio.to_thread", side_effect=never_finishes)

        with pytest.raises(PhotoAnalysisError) as exc_info:
            asyncio.run(annotator.generate(b"img", "image/jpeg", "describe", timeout=0.05))
        assert exc_info.value.code == ErrorCode.TIMEOUT
