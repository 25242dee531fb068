import asyncio
import sys

import asyncpg

from quickbite.config import settings


async def create_db() -> None:
    """Создаёт базу DB_NAME, если её ещё нет. Схемы сервисы применяют сами при старте."""
    db_name = settings.database.DB_NAME
    # Подключаемся к служебной базе, чтобы создать новую
    sys_conn = await asyncpg.connect(
        user=settings.database.DB_USER,
        password=settings.database.DB_PASSWORD,
        host=settings.database.DB_HOST,
        port=settings.database.DB_PORT,
        database="postgres",
    )
    try:
        exists = await sys_conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if exists:
            print(f"Database {db_name} already exists.")
            return
        print(f"Creating database {db_name}...")
        await sys_conn.execute(f'CREATE DATABASE "{db_name}"')
        print("Database created.")
    finally:
        await sys_conn.close()


if __name__ == "__main__":
    try:
        asyncio.run(create_db())
    except (asyncpg.PostgresError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)
