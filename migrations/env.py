from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool, text
from sqlalchemy.schema import CreateSchema

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = PROJECT_ROOT / "src"

if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from cameyo_api.core.config import get_settings  # noqa: E402
from cameyo_api.core.db_base import Base  # noqa: E402
from cameyo_api.modules.users import models as _  # noqa: F401,E402 - ensure models are imported
from cameyo_api.tenancy.identifiers import PUBLIC_TENANT, validate_tenant_id  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
database_url = settings.DATABASE_URL
if not database_url:
    raise RuntimeError("DATABASE_URL is not configured")
config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))

# `alembic -x tenant=<id> upgrade head` targets one tenant schema
tenant_schema = validate_tenant_id(
    context.get_x_argument(as_dictionary=True).get("tenant", PUBLIC_TENANT),
    max_length=settings.TENANT_ID_MAX_LENGTH,
)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=tenant_schema,
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
        if connection.dialect.name == "postgresql":
            connection.execute(CreateSchema(tenant_schema, if_not_exists=True))
            # tenant_schema passed validation, so quoting it is safe
            connection.execute(text(f'SET search_path TO "{tenant_schema}"'))
            connection.commit()
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                version_table_schema=tenant_schema,
            )
        else:
            context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
