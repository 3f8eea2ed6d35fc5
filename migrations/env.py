from logging.config import fileConfig
import sys
from pathlib import Path

from sqlalchemy import engine_from_config, pool
from alembic import context

# alembic runs from the repo root; keep `cmscore` importable without an install
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(PROJECT_ROOT))

from cmscore.config import settings  # noqa: E402

# Alembic is sync: swap the driver for psycopg (asyncpg URLs carry none or +asyncpg)
sync_url = str(settings.POSTGRES_URL).replace("+asyncpg", "")
sync_url = sync_url.replace("postgresql://", "postgresql+psycopg://", 1)

config = context.config
config.set_main_option("sqlalchemy.url", sync_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# tables are raw-SQL jsonb documents, no SQLAlchemy models
target_metadata = None


def run_migrations_offline() -> None:
    context.configure(
        url=sync_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
