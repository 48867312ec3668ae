from __future__ import annotations

from alembic import command
from alembic.config import Config

from app.infra.logging import configure_logging


def run_upgrade_head(config_path: str = "alembic.ini") -> None:
    configure_logging()
    config = Config(config_path)
    command.upgrade(config, "head")


if __name__ == "__main__":
    run_upgrade_head()
