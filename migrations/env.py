from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv()

from app.config import get_settings  # noqa: E402  (reads .env / environment)
from app.models import Base  # noqa: E402

target_metadata = Base.metadata  # autogenerate from ORM

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _sync_url() -> str:
    S = get_settings()
    url = S.SYNC_DATABASE_URL or S.DATABASE_URL
    # alembic runs synchronously; migrations target Postgres (citext, jsonb)
    return url.replace("postgresql+asyncpg://", "postgresql+psycopg://", 1)


config.set_main_option("sqlalchemy.url", _sync_url())


def _configure_kwargs() -> dict:
    return {"target_metadata": target_metadata, "compare_type": True}


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
