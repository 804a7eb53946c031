from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from .config import load_config

SCHEMA_PATH = Path(__file__).resolve().with_name("schema.sql")


def main():
    load_dotenv()
    config = load_config()
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")

    with psycopg2.connect(**config.db_settings()) as conn, conn.cursor() as cur:
        cur.execute(ddl)
        conn.commit()
    print(f"Schema applied to {config.db_name} on {config.db_host}:{config.db_port}.")


if __name__ == "__main__":
    main()
