import psycopg2
from dotenv import load_dotenv

from metering.app.entitlements.repository import SCHEMA_SQL
from metering.config import load_config

load_dotenv()


def main():
    config = load_config()
    with psycopg2.connect(**config.database.psycopg2_kwargs()) as conn, conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
        conn.commit()
    print(f"Done. Metering tables are ready in {config.database.name}.")


if __name__ == "__main__":
    main()
