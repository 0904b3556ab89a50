"""
Token-based fuzzy matching of spoken names against contact display names.

"John Kennedy" should find "John F. Kennedy" and "John Fitzgerald Kennedy", but "John K" must not
find "John F. Kennedy": single letters only match single letters (an initial), never a prefix.
"""

import logging
from dataclasses import dataclass
from typing import (
    List,
    Sequence,
    Tuple,
)

from courier.core.errors import (
    AmbiguousMatchError,
    NotFoundError,
)
from courier.core.schema import (
    ClarificationOption,
    Contact,
)

logger = logging.getLogger(__name__)

MIN_PREFIX_LENGTH = 2
EXACT_TOKEN_QUALITY = 1.0
QUALITY_WEIGHT = 0.7
COVERAGE_WEIGHT = 0.3


@dataclass(frozen=True)
class ScoredContact:
    """A contact that matched the query, with its confidence."""

    contact: Contact
    score: float
    is_recent: bool = False


def tokenize(text: str) -> List[str]:
    """Lowercase whitespace tokenisation."""
    return text.lower().split()


def _strip_period(token: str) -> str:
    return token[:-1] if token.endswith(".") else token


def is_initial(token: str) -> bool:
    """A middle initial: at most two characters, one letter once a trailing period is gone."""
    stripped = _strip_period(token)
    return len(token) <= 2 and len(stripped) == 1 and stripped.isalpha()


def token_quality(query_token: str, candidate_token: str) -> float:
    """Return the match quality of two tokens in [0, 1]; 0 means no match."""
    q = _strip_period(query_token)
    c = _strip_period(candidate_token)
    if not q or not c:
        return 0.0
    if q == c:
        return EXACT_TOKEN_QUALITY
    shorter, longer = (q, c) if len(q) <= len(c) else (c, q)
    if len(shorter) >= MIN_PREFIX_LENGTH and longer.startswith(shorter):
        return 0.6 + 0.4 * (len(shorter) / len(longer))
    return 0.0


def score_name(query: str, candidate: str) -> float | None:
    """
    Score *candidate* against *query*, or return ``None`` if it does not match.

    Query tokens are walked in order with a forward-only cursor over the candidate tokens.  Skipped
    middle initials are free; skipped full tokens lower the coverage part of the score.
    """
    query_tokens = tokenize(query)
    candidate_tokens = tokenize(candidate)
    if not query_tokens or len(candidate_tokens) < len(query_tokens):
        return None

    qualities: List[float] = []
    cursor = 0
    for q_token in query_tokens:
        while cursor < len(candidate_tokens):
            quality = token_quality(q_token, candidate_tokens[cursor])
            cursor += 1
            if quality > 0:
                qualities.append(quality)
                break
        else:
            return None

    significant = [token for token in candidate_tokens if not is_initial(token)]
    coverage = min(len(qualities) / len(significant), 1.0) if significant else 1.0
    mean_quality = sum(qualities) / len(qualities)
    return round(QUALITY_WEIGHT * mean_quality + COVERAGE_WEIGHT * coverage, 4)


def score_email(query: str, email: str | None) -> float | None:
    """Exact email match scores 1.0, a local-part prefix scores 0.6."""
    if not email:
        return None
    q = query.strip().lower()
    e = email.lower()
    if q == e:
        return 1.0
    local_part = e.split("@", 1)[0]
    if " " not in q and len(q) >= MIN_PREFIX_LENGTH and local_part.startswith(q):
        return 0.6
    return None


def score_contact(query: str, contact: Contact) -> float | None:
    """Best of the name and email scores."""
    candidates = (score_name(query, contact.display_name), score_email(query, contact.email))
    scores = [s for s in candidates if s]
    return max(scores) if scores else None


def rank_contacts(
    query: str,
    contacts: Sequence[Contact],
    recent_ids: Sequence[str] = (),
    recent_boost: float = 0.0,
    min_score: float = 0.0,
) -> List[ScoredContact]:
    """Score every contact, keep those at or above *min_score*, best first."""
    recent = set(recent_ids)
    ranked: List[ScoredContact] = []
    for contact in contacts:
        score = score_contact(query, contact)
        if score is None:
            continue
        is_recent = contact.id in recent
        if is_recent:
            score = min(score + recent_boost, 1.0)
        if score >= min_score:
            ranked.append(
                ScoredContact(contact=contact, score=round(score, 4), is_recent=is_recent)
            )
    ranked.sort(key=lambda item: (-item.score, item.contact.display_name.lower()))
    return ranked


def to_option(item: ScoredContact) -> ClarificationOption:
    """Render a scored contact as a clarification option."""
    return ClarificationOption(
        id=item.contact.id,
        title=item.contact.display_name,
        subtitle=item.contact.email or "",
        confidence=item.score,
        metadata={"is_recent": item.is_recent},
    )


def resolve_contact(
    query: str,
    ranked: Sequence[ScoredContact],
    epsilon: float,
    floor: float,
    max_options: int = 5,
) -> Tuple[ScoredContact, List[ScoredContact]]:
    """
    Pick the single contact *query* refers to.

    Returns ``(best, ranked)``.  Raises :class:`NotFoundError` when nothing matched and
    :class:`AmbiguousMatchError` when the top two are within *epsilon* of each other or the best
    score is below *floor*.
    """
    if not ranked:
        raise NotFoundError(
            f'No contacts found matching "{query}"',
            suggestion="Check the spelling or use the contact's full name.",
        )

    best = ranked[0]
    options = [to_option(item) for item in ranked[:max_options]]
    if len(ranked) > 1 and best.score - ranked[1].score < epsilon:
        logger.info(
            "Ambiguous contact query '%s': top scores %.3f / %.3f",
            query,
            best.score,
            ranked[1].score,
        )
        raise AmbiguousMatchError(
            f'I found {len(ranked)} contacts matching "{query}". Which one did you mean?', options
        )
    if best.score < floor:
        logger.info("Low-confidence contact match for '%s': %.3f", query, best.score)
        raise AmbiguousMatchError(
            f'Did you mean {best.contact.display_name}?', options, low_confidence=True
        )
    return best, list(ranked)
