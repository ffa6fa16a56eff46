import uuid
from itertools import permutations
from typing import Iterable, List, Tuple
from freshcart.orders.constants import COPURCHASE_MAX_ITEMS, COPURCHASE_MIN_ITEMS


def directional_pairs(product_ids: Iterable[uuid.UUID]) -> List[Tuple[uuid.UUID, uuid.UUID]]:
    """All ordered (A, B) pairs of distinct products in a basket, A != B.

    Baskets outside the [COPURCHASE_MIN_ITEMS, COPURCHASE_MAX_ITEMS] range produce no pairs.
    """
    distinct = sorted(set(product_ids))
    if len(distinct) < COPURCHASE_MIN_ITEMS or len(distinct) > COPURCHASE_MAX_ITEMS:
        return []
    return list(permutations(distinct, 2))
