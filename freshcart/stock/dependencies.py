from freshcart.db.connection import async_session
from freshcart.stock.feed import stock_feed
from freshcart.stock.repository import session_stock_fetcher


def get_stock_feed():
    return stock_feed


def get_stock_fetcher():
    return session_stock_fetcher(async_session)
