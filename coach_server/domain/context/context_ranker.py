from typing import List, Optional
import re

from domain.models.turn import MemoryHit

_WORD = re.compile(r"\w+")


class ContextRanker:
    """Ranks memory snippets by keyword overlap with the user's message"""

    def __init__(self, default_score: float = 0.7, max_hits: int = 5):
        self.default_score = default_score
        self.max_hits = max_hits

    def calculate_relevance(self, query: str, content: str) -> float:
        """Calculate relevance score between query and content"""

        query_lower = query.lower()
        content_lower = content.lower()

        query_words = set(_WORD.findall(query_lower))
        content_words = set(_WORD.findall(content_lower))

        if not query_words:
            return 0.0

        overlap = len(query_words.intersection(content_words))
        score = overlap / len(query_words)

        # Boost score if query appears as substring
        if query_lower in content_lower:
            score += 0.3

        return min(score, 1.0)

    def rank(self, hits: List[MemoryHit], query: Optional[str] = None) -> List[MemoryHit]:
        """Score hits against ``query`` and keep the best ``max_hits``"""

        if query:
            scored = [
                hit.model_copy(update={"score": self.calculate_relevance(query, hit.snippet)})
                for hit in hits
            ]
        else:
            scored = [hit.model_copy(update={"score": self.default_score}) for hit in hits]

        # sorted() is stable, so equal scores keep their stored order
        return sorted(scored, key=lambda hit: hit.score, reverse=True)[:self.max_hits]
