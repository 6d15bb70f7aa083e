from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.infra.db import DATABASE_URL
from app.infra.logging import configure_logging, get_logger

ROOT = Path(__file__).resolve().parents[2]

logger = get_logger("migrate")


def alembic_config(database_url: str | None = None) -> Config:
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "infra" / "migrations"))
    # ConfigParser interpolates "%", which URL-encoded passwords contain.
    config.set_main_option("sqlalchemy.url", (database_url or DATABASE_URL).replace("%", "%%"))
    return config


def run_upgrade(revision: str = "head", database_url: str | None = None) -> None:
    logger.info("applying migrations", extra={"revision": revision})
    command.upgrade(alembic_config(database_url), revision)


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply asset-tracker schema migrations.")
    parser.add_argument("revision", nargs="?", default="head")
    args = parser.parse_args()
    configure_logging()
    run_upgrade(args.revision)


if __name__ == "__main__":
    main()
