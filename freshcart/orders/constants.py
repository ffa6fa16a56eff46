from freshcart.common.logging_setup import get_logger

logger = get_logger("freshcart.orders")

# co-purchase aggregation only looks at baskets of this size (distinct products)
COPURCHASE_MIN_ITEMS = 2
COPURCHASE_MAX_ITEMS = 20

GENERIC_PLACE_ORDER_ERROR = "Order could not be placed. Please try again."
