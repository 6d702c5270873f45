"""
Alembic environment for the governance schema (Flask-SQLAlchemy metadata)
"""
from logging.config import fileConfig
import sys
from pathlib import Path

from alembic import context

# The Flask app lives one directory up
sys.path.insert(0, str(Path(__file__).parent.parent))

from server import app, db  # noqa: E402
import models  # noqa: E402,F401  (registers all models on db.metadata)

config = context.config
config.set_main_option('sqlalchemy.url', app.config['SQLALCHEMY_DATABASE_URI'])

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = db.metadata

COMPARE_OPTIONS = {
    'compare_type': True,
    'compare_server_default': True,
}


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        url=config.get_main_option('sqlalchemy.url'),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={'paramstyle': 'named'},
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against the app's engine."""
    with app.app_context():
        with db.engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=connection.dialect.name == 'sqlite',
                **COMPARE_OPTIONS,
            )
            with context.begin_transaction():
                context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
