"""
Two-stage photo search.

Stage 1 retrieves candidates from the database (full-text rank plus tag
overlap). Short queries with few hits return in retrieval order; anything
else is re-ranked by the language model, falling back to retrieval order
if ranking fails.
"""
import json
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.repositories.analysis_repo import PhotoAnalysisRepository, query_tokens
from gallery_ai.schemas.search import SearchCandidate, SearchResult
from gallery_ai.services.ai.gemini import strip_code_fence
from gallery_ai.services.ai.prompts import build_rank_prompt
from gallery_ai.services.analysis.interfaces import Annotator

logger = logging.getLogger(__name__)

FAST_PATH_MAX_WORDS = 2
FAST_PATH_MAX_CANDIDATES = 10
FAST_PATH_STEP = 0.05
FALLBACK_STEP = 0.02


class PhotoSearchEngine:
    """Natural-language search over analyzed photos in one gallery."""

    def __init__(self, db: Session, annotator: Annotator, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.analyses = PhotoAnalysisRepository(db)
        self.annotator = annotator

    async def search_gallery_photos(self, gallery_id: str, query: str) -> List[SearchResult]:
        """
        Search a gallery.

        Args:
            gallery_id: Gallery to search
            query: Free-text query

        Returns:
            Results ordered by relevance, scores in [0, 1]
        """
        query = (query or "").strip()
        if not query:
            return []

        candidates = self.analyses.search_candidates(
            gallery_id,
            query,
            limit=self.config.SEARCH_CANDIDATE_LIMIT,
        )
        if not candidates:
            return []

        if len(query.split()) <= FAST_PATH_MAX_WORDS and len(candidates) <= FAST_PATH_MAX_CANDIDATES:
            return self._tag_results(candidates, query)

        return await self._rank_candidates(candidates, query)

    def _tag_results(self, candidates: List[SearchCandidate], query: str) -> List[SearchResult]:
        tokens = set(query_tokens(query))
        results = []
        for i, candidate in enumerate(candidates):
            matched = [tag for tag in candidate.search_tags if tag in tokens]
            shown = matched or candidate.search_tags[:3]
            results.append(SearchResult(
                photo_id=candidate.photo_id,
                relevance_score=max(0.0, 1 - i * FAST_PATH_STEP),
                match_reason=f"Matched tags: {', '.join(shown)}",
            ))
        return results

    async def _rank_candidates(self, candidates: List[SearchCandidate], query: str) -> List[SearchResult]:
        prompt = build_rank_prompt(query, candidates)
        try:
            raw = await self.annotator.rank(prompt, timeout=self.config.RANK_TIMEOUT_SECS)
            ranked = json.loads(strip_code_fence(raw))
            if not isinstance(ranked, list):
                raise ValueError(f"Expected a JSON array, got {type(ranked).__name__}")
        except Exception as e:
            logger.error(f"LLM ranking failed, returning retrieval results: {e}")
            return [
                SearchResult(
                    photo_id=candidate.photo_id,
                    relevance_score=max(0.0, 1 - i * FALLBACK_STEP),
                    match_reason="Matched by text search",
                )
                for i, candidate in enumerate(candidates)
            ]

        results = []
        seen = set()
        for item in ranked:
            if not isinstance(item, dict):
                continue
            index = item.get("index")
            score = item.get("relevanceScore")
            if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(candidates):
                continue
            if not isinstance(score, (int, float)) or isinstance(score, bool):
                continue
            if score <= self.config.SEARCH_MIN_RELEVANCE:
                continue
            photo_id = candidates[index].photo_id
            if photo_id in seen:
                continue
            seen.add(photo_id)
            results.append(SearchResult(
                photo_id=photo_id,
                relevance_score=min(1.0, max(0.0, float(score))),
                match_reason=str(item.get("matchReason") or "Relevant to query"),
            ))

        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results
