from __future__ import annotations

import logging
import os

from alembic import command
from alembic.config import Config

from portal.infra.db import DATABASE_URL

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")

logger = logging.getLogger(__name__)


def run_upgrade_head(database_url: str = DATABASE_URL, config_path: str | None = None) -> None:
    config = Config(config_path or ALEMBIC_CONFIG)
    config.attributes["database_url"] = database_url
    logger.info("upgrading schema to head using %s", config.config_file_name)
    command.upgrade(config, "head")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_upgrade_head()
