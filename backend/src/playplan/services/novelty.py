import re
from dataclasses import dataclass

DEFAULT_NOVELTY_THRESHOLD = 0.6

_SEPARATORS = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class NoveltyResult:
    approved: bool
    score: float
    most_similar: str | None = None


def tokenize(text: str) -> set[str]:
    return {token for token in _SEPARATORS.split(text.lower()) if token}


def jaccard(a: set[str], b: set[str]) -> float:
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


def check_novelty(
    title: str,
    concept: str,
    recent_concepts: list[str],
    threshold: float = DEFAULT_NOVELTY_THRESHOLD,
) -> NoveltyResult:
    """Compare a candidate title+concept against recently produced concepts.

    The candidate is rejected when its highest Jaccard similarity against any
    recent concept reaches ``threshold``. Ties keep the first concept seen.
    """
    if not recent_concepts:
        return NoveltyResult(approved=True, score=0.0)

    candidate = tokenize(f"{title} {concept}")
    max_score = 0.0
    most_similar: str | None = None

    for recent in recent_concepts:
        score = jaccard(candidate, tokenize(recent))
        if most_similar is None or score > max_score:
            max_score = score
            most_similar = recent

    return NoveltyResult(
        approved=max_score < threshold,
        score=max_score,
        most_similar=most_similar,
    )
