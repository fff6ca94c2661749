import argparse
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .models import Base
from .seeds.main import seed_all_data
from .session import engine as default_engine

from app.utils.logging import get_logger

logger = get_logger(job="db_bootstrap")


def create_tables(bind: Optional[Engine] = None):
    Base.metadata.create_all(bind or default_engine)
    logger.info(f"Created {len(Base.metadata.tables)} tables.")


def drop_tables(bind: Optional[Engine] = None):
    Base.metadata.drop_all(bind or default_engine)
    logger.info("Dropped all tables.")


def seed_db(db_session: Optional[Session] = None):
    """Seed reference data the batch jobs read: templates and system configs"""
    seed_all_data(db_session)


def reset_db(bind: Optional[Engine] = None):
    logger.info("Resetting database...")
    drop_tables(bind)
    create_tables(bind)
    if bind is None:
        seed_db()
    else:
        with Session(bind=bind) as db_session:
            seed_db(db_session)
    logger.info("Database reset complete.")


COMMANDS = {
    "create": create_tables,
    "drop": drop_tables,
    "seed": seed_db,
    "reset": reset_db,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="UAR batch database bootstrap")
    parser.add_argument("command", choices=sorted(COMMANDS), nargs="?", default="reset")
    args = parser.parse_args(argv)
    COMMANDS[args.command]()


if __name__ == "__main__":
    main()
