"""Hybrid combiner: adaptive weights, blending, explanations, diversity."""

from typing import Sequence

from hybridrec.core.contracts import ItemFeatures, RecommendationItem, Weights

# Weight table keyed by rating count
COLD_START_WEIGHTS = Weights(content=0.5, collaborative=0.1, popularity=0.4)
BUILDING_WEIGHTS = Weights(content=0.6, collaborative=0.3, popularity=0.1)
EXPERIENCED_WEIGHTS = Weights(content=0.4, collaborative=0.5, popularity=0.1)
POWER_USER_POPULARITY = 0.05

STRONG_SCORE = 0.7
MEANINGFUL_WEIGHT = 0.3
POPULAR_SCORE = 0.8

GENRE_OVERLAP_PENALTY = 0.3
DIRECTOR_OVERLAP_PENALTY = 0.2


def select_weights(rating_count: int) -> Weights:
    """Pick blending weights from how many ratings the user has given.

    Args:
        rating_count: Number of ratings in the profile

    Returns:
        Weights summing to 1
    """
    if rating_count < 5:
        return COLD_START_WEIGHTS
    if rating_count < 20:
        return BUILDING_WEIGHTS
    if rating_count < 100:
        return EXPERIENCED_WEIGHTS

    collaborative = min(0.8, 0.6 + rating_count / 500)
    # content takes whatever collaborative and popularity leave
    content = 1.0 - collaborative - POWER_USER_POPULARITY
    return Weights(
        content=round(content, 10),
        collaborative=collaborative,
        popularity=POWER_USER_POPULARITY,
    )


def combined_score(
    content: float,
    collaborative: float,
    popularity: float,
    weights: Weights,
) -> float:
    return (
        content * weights.content
        + collaborative * weights.collaborative
        + popularity * weights.popularity
    )


def generate_explanations(item: RecommendationItem, weights: Weights) -> list[str]:
    """Short human-readable reasons behind a recommendation."""
    explanations = []

    if item.content_score > STRONG_SCORE and weights.content > MEANINGFUL_WEIGHT:
        explanations.append(
            f"Strong match with your preferences ({item.content_score * 100:.0f}% content similarity)"
        )

    if item.collaborative_score > STRONG_SCORE and weights.collaborative > MEANINGFUL_WEIGHT:
        explanations.append(
            f"Users with similar taste enjoyed this ({item.collaborative_score * 100:.0f}% collaborative score)"
        )

    if item.popularity_score > POPULAR_SCORE:
        explanations.append("Popular choice among all users")

    return explanations


def combine_scores(
    candidates: Sequence[ItemFeatures],
    content: dict[str, float],
    collaborative: dict[str, float],
    popularity: dict[str, float],
    weights: Weights,
    include_explanations: bool = False,
) -> list[RecommendationItem]:
    """Blend per-source scores into RecommendationItems.

    A source without a score for an item contributes 0; the remaining
    weights are not renormalized. Items no source scored are dropped.

    Args:
        candidates: Candidate items, in candidate order
        content: Content scores by item ID
        collaborative: Collaborative scores by item ID
        popularity: Popularity scores by item ID
        weights: Blending weights
        include_explanations: Attach explanations to every item

    Returns:
        Items in candidate order
    """
    items = []
    for candidate in candidates:
        item_id = candidate.item_id
        if item_id not in content and item_id not in collaborative and item_id not in popularity:
            continue

        c = content.get(item_id, 0.0)
        cf = collaborative.get(item_id, 0.0)
        p = popularity.get(item_id, 0.0)
        item = RecommendationItem(
            item_id=item_id,
            title=candidate.title,
            score=combined_score(c, cf, p, weights),
            content_score=c,
            collaborative_score=cf,
            popularity_score=p,
            weights=weights,
            genres=candidate.genres,
            directors=candidate.directors,
        )
        if include_explanations:
            item.explanations = generate_explanations(item, weights)
        items.append(item)

    return items


def apply_diversity(
    items: Sequence[RecommendationItem],
    diversity_factor: float,
) -> list[RecommendationItem]:
    """Penalize items repeating genres or directors of higher-ranked items.

    Items are visited by score, highest first (stable). Each one is
    multiplied by ``1 - factor * penalty`` where penalty is 0.3 when any
    genre was already seen plus 0.2 when any director was. A factor of 0
    returns the items untouched.
    """
    if diversity_factor == 0:
        return list(items)

    seen_genres: set[str] = set()
    seen_directors: set[str] = set()
    result = []

    for item in sorted(items, key=lambda i: i.score, reverse=True):
        penalty = 0.0
        if any(g in seen_genres for g in item.genres):
            penalty += GENRE_OVERLAP_PENALTY
        if any(d in seen_directors for d in item.directors):
            penalty += DIRECTOR_OVERLAP_PENALTY

        item.score = item.score * (1 - penalty * diversity_factor)
        result.append(item)

        seen_genres.update(item.genres)
        seen_directors.update(item.directors)

    return result


def finalize(
    items: Sequence[RecommendationItem],
    min_score: float,
    count: int,
) -> list[RecommendationItem]:
    """Keep items scoring at least min_score, best first, at most count."""
    kept = [item for item in items if item.score >= min_score]
    kept.sort(key=lambda i: i.score, reverse=True)
    return kept[:count]
