"""
Merge per-shape candidates into the final feed.

  1. Concatenate discovery, followed and repost candidates (ads stay apart).
  2. Stable sort by composite score, descending: equal scores keep
     retrieval order.
  3. Dedup by contract id, first occurrence wins.
  4. Attribute each contract to one reason using REASON_PRIORITY.
  5. Drop ads whose contract is already in the organic feed, one row per ad.
  6. Emit repost comments / bets / reposts in occurrence order.
"""
from dataclasses import dataclass, field

from contract_feed.ranking.candidates import ScoredCandidate, Shape
from contract_feed.schemas import (
    AdOut,
    BetOut,
    CommentOut,
    ContractOut,
    FeedReason,
    RepostOut,
)

# Concatenation order before the sort; also the tie-break order.
ORGANIC_SHAPES = (
    Shape.CONVERSION,
    Shape.IMPORTANCE,
    Shape.FRESHNESS,
    Shape.FOLLOWED,
    Shape.REPOST,
)

REASON_PRIORITY: tuple[tuple[Shape, FeedReason], ...] = (
    (Shape.FOLLOWED, FeedReason.FOLLOWED),
    (Shape.CONVERSION, FeedReason.CONVERSION),
    (Shape.IMPORTANCE, FeedReason.IMPORTANCE),
    (Shape.FRESHNESS, FeedReason.FRESHNESS),
)


@dataclass
class FeedResult:
    contracts: list[ContractOut] = field(default_factory=list)
    ids_to_reason: dict[str, FeedReason] = field(default_factory=dict)
    ads: list[AdOut] = field(default_factory=list)
    comments: list[CommentOut] = field(default_factory=list)
    bets: list[BetOut] = field(default_factory=list)
    reposts: list[RepostOut] = field(default_factory=list)


def rank_candidates(candidates: list[ScoredCandidate]) -> list[ContractOut]:
    ranked = sorted(candidates, key=lambda c: c.composite_score, reverse=True)
    seen: set[str] = set()
    contracts: list[ContractOut] = []
    for candidate in ranked:
        if candidate.contract.id in seen:
            continue
        seen.add(candidate.contract.id)
        contracts.append(candidate.contract)
    return contracts


def attribute(
    contract_ids: list[str], results: dict[Shape, list[ScoredCandidate]]
) -> dict[str, FeedReason]:
    shapes_by_id: dict[str, set[Shape]] = {}
    for shape, _ in REASON_PRIORITY:
        for candidate in results.get(shape, []):
            shapes_by_id.setdefault(candidate.contract.id, set()).add(shape)

    reasons = {}
    for contract_id in contract_ids:
        matched = shapes_by_id.get(contract_id, set())
        reasons[contract_id] = next(
            (reason for shape, reason in REASON_PRIORITY if shape in matched),
            FeedReason.NONE,
        )
    return reasons


def merge_feed(results: dict[Shape, list[ScoredCandidate]]) -> FeedResult:
    organic = [c for shape in ORGANIC_SHAPES for c in results.get(shape, [])]
    contracts = rank_candidates(organic)
    organic_ids = {c.id for c in contracts}

    ads: list[AdOut] = []
    seen_ads: set[str] = set()
    for c in results.get(Shape.SPONSORED, []):
        # One row per matching topic; keep the best-ranked row of each ad
        if c.ad_id is None or c.ad_id in seen_ads or c.contract.id in organic_ids:
            continue
        seen_ads.add(c.ad_id)
        ads.append(AdOut(ad_id=c.ad_id, contract=c.contract, topic_score=c.topic_score))

    reposts = results.get(Shape.REPOST, [])
    return FeedResult(
        contracts=contracts,
        ids_to_reason=attribute([c.id for c in contracts], results),
        ads=ads,
        comments=[c.comment for c in reposts if c.comment is not None],
        bets=[c.bet for c in reposts if c.bet is not None],
        reposts=[c.repost for c in reposts if c.repost is not None],
    )
