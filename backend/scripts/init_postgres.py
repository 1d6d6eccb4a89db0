"""
Check the PostgreSQL database for Growi.
Run once before applying migrations: python scripts/init_postgres.py

Requires: PostgreSQL installed and running. Create user and database:

  sudo -u postgres psql
  CREATE USER growi WITH PASSWORD 'growi';
  CREATE DATABASE growi_db OWNER growi;
  GRANT ALL PRIVILEGES ON DATABASE growi_db TO growi;
  \q
"""

import sys

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from growi_api.config import settings


def main():
    url = settings.get_database_url()
    if not url.startswith("postgresql"):
        print("DATABASE_URL is not PostgreSQL. Skipping.")
        return
    try:
        engine = create_engine(url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("PostgreSQL connection OK. Database exists.")
    except SQLAlchemyError as e:
        print(f"Cannot connect to PostgreSQL: {e}")
        print("\nCreate database first:")
        print("  psql -U postgres -c \"CREATE USER growi WITH PASSWORD 'growi';\"")
        print("  psql -U postgres -c \"CREATE DATABASE growi_db OWNER growi;\"")
        print("  psql -U postgres -c \"GRANT ALL PRIVILEGES ON DATABASE growi_db TO growi;\"")
        sys.exit(1)


if __name__ == "__main__":
    main()
