"""Card query cache invalidation.

After a card mutation, cached "card by id" results for that card must be
refreshed. Public ids shorter than the configured minimum are placeholders
(e.g. an optimistic card not yet created server-side) and must never key an
invalidation, since that could hit unrelated or overly broad entries.
"""

from __future__ import annotations

import logging

from kan.adapters.query_cache.base import QueryInvalidator, QueryKey
from kan.core.config import settings

logger = logging.getLogger(__name__)

CARD_BY_ID_PATH = ("card", "byId")


def card_query_key(card_public_id: str) -> QueryKey:
    """Descriptor selecting the cached "card by id" result for one card."""
    return QueryKey(path=CARD_BY_ID_PATH, input={"cardPublicId": card_public_id})


def is_resolved_card_public_id(card_public_id: str | None, *, min_length: int | None = None) -> bool:
    threshold = settings.cache.card_public_id_min_length if min_length is None else min_length
    return bool(card_public_id) and len(card_public_id) >= threshold


async def invalidate_card(
    cache: QueryInvalidator,
    card_public_id: str | None,
    *,
    min_length: int | None = None,
) -> bool:
    """Invalidate cached queries for a card.

    Args:
        cache: Invalidation facility, awaited once per valid id.
        card_public_id: Public id of the mutated card.
        min_length: Override for the minimum id length (defaults to settings).

    Returns:
        True if invalidation was requested, False if the id was empty or too
        short and the cache was left alone.

    Raises:
        Whatever ``cache.invalidate`` raises, unchanged.
    """

    if not is_resolved_card_public_id(card_public_id, min_length=min_length):
        logger.debug(
            "card_cache.invalidation_skipped",
            extra={"card_public_id_length": len(card_public_id or "")},
        )
        return False

    await cache.invalidate(card_query_key(card_public_id))
    logger.info("card_cache.invalidated", extra={"card_public_id": card_public_id})
    return True
