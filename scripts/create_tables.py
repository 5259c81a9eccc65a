"""One-off helper to create the database tables.

Usage (from the project root):

    python scripts/create_tables.py

Connection settings come from the same POSTGRES_* variables (or .env) the app
uses. Existing tables are left untouched.
"""

import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

# Add project root to Python path so we can import pkg and app modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

load_dotenv()

from app.core.config import settings  # noqa: E402
from app.core.logger import get_logger  # noqa: E402
from pkg.db_util.postgres_conn import PostgresConnection  # noqa: E402
from pkg.db_util.sql_alchemy.declarative_base import Base  # noqa: E402
from pkg.db_util.types import PostgresConfig  # noqa: E402

# Import all model modules so tables are registered in Base.metadata
from app.chat.repository.sql_schema import conversation as _conv  # noqa: E402,F401
from app.memory.repository.sql_schema import memory as _memory  # noqa: E402,F401

logger = get_logger("create_tables")


async def main() -> int:
    conn = PostgresConnection(
        PostgresConfig(
            host=settings.POSTGRES_HOST,
            port=settings.POSTGRES_PORT,
            username=settings.POSTGRES_USER,
            password=settings.POSTGRES_PASSWORD,
            database=settings.POSTGRES_DB,
        ),
        logger,
    )
    try:
        engine = await conn.get_engine()
        async with engine.begin() as db:
            await db.run_sync(Base.metadata.create_all)
            result = await db.execute(text(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = 'public' ORDER BY table_name"
            ))
            tables = [row[0] for row in result]
        logger.info(f"Tables in database: {', '.join(tables) or 'none'}")
        return 0
    except (SQLAlchemyError, ConnectionError, ValueError) as e:
        logger.error(f"Could not create tables: {e}")
        return 1
    finally:
        await conn.close_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
