from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import  AsyncSession
from freshcart.db.connection import async_session

async def get_session() -> AsyncGenerator[AsyncSession,None]:
    async with async_session() as session:  # session is closed at the end of the with block, uncommitted work is rolled back
        yield session
        

async def get_session_factory():
    yield async_session
