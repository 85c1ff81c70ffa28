import logging
import os
import re
import time

from sqlalchemy import create_engine, text
from config import DATABASE_URL, DB_HOST, DB_NAME, DB_USER, DB_PASSWORD, DB_PORT

logger = logging.getLogger(__name__)

MIGRATION_DIR = os.path.join(os.path.dirname(__file__), "migrations")

# Memoization cache for database engines
_engine_cache = {}


def _build_url(dbname):
    if DATABASE_URL:
        return DATABASE_URL, DATABASE_URL.split("@")[-1]
    return (
        f'postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{dbname}',
        f'postgresql+psycopg2://{DB_USER}:***@{DB_HOST}:{DB_PORT}/{dbname}',
    )


def get_db_connection(dbname=DB_NAME):
    """
    Establishes and retrieves a database engine, caching the engine for reuse.
    Returns None when the database cannot be reached.
    """
    if dbname in _engine_cache:
        logger.debug(f"Using cached connection for database: {dbname}")
        return _engine_cache[dbname]

    # Validate required parameters
    if not DATABASE_URL and not all([DB_USER, DB_PASSWORD, DB_HOST, DB_PORT, dbname]):
        missing = [name for name, value in (("DB_USER", DB_USER), ("DB_PASSWORD", DB_PASSWORD), ("DB_HOST", DB_HOST),
                                            ("DB_PORT", DB_PORT), ("DB_NAME", dbname)) if not value]
        logger.error(f"❌ Missing database connection parameters: {', '.join(missing)} (or set DATABASE_URL)")
        return None

    url, connection_string = _build_url(dbname)
    logger.info(f"🔄 Establishing new database connection to {connection_string}")

    try:
        if url.startswith("postgresql"):
            engine = create_engine(
                url,
                pool_pre_ping=True,
                pool_recycle=3600,
                pool_size=5,
                max_overflow=5,
                connect_args={
                    "connect_timeout": 30,
                    "application_name": "clm_analytics",
                    "keepalives": 1,
                    "keepalives_idle": 30,
                    "keepalives_interval": 10,
                    "keepalives_count": 5
                }
            )
        else:
            engine = create_engine(url, pool_pre_ping=True)

        # Test the connection with retries
        max_retries = 3
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                with engine.connect() as conn:
                    result = conn.execute(text("SELECT 1"))
                    if result.fetchone()[0] != 1:
                        raise RuntimeError("Connection test failed")
                break  # Connection successful
            except Exception as e:
                if attempt < max_retries - 1:
                    logger.warning(f"⚠️ Connection attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {retry_delay}s...")
                    time.sleep(retry_delay)
                else:
                    logger.error("❌ All connection attempts failed.")
                    raise

        _engine_cache[dbname] = engine
        logger.info(f"✅ Database connection established: {connection_string}")
        return engine

    except Exception as e:
        logger.error(f"❌ Error connecting to database: {e}")
        logger.error(f"   Check that the server at {connection_string} is running and reachable")
        return None


def _create_schema_from_models(engine):
    from database.models import Base
    Base.metadata.create_all(engine)
    logger.info(f"✅ Schema ensured from ORM models on {engine.dialect.name}")


def apply_migrations(migration_dir=MIGRATION_DIR, engine=None):
    """
    Applies versioned SQL migrations (V<n>__name.sql) to PostgreSQL, tracking
    them in applied_migrations. Other dialects get the schema from the ORM models.
    """
    logger.info("=== STARTING MIGRATION PROCESS ===")

    engine = engine or get_db_connection()
    if engine is None:
        raise RuntimeError("Failed to connect to application database")

    if engine.dialect.name != "postgresql":
        _create_schema_from_models(engine)
        return []

    migrations_applied = []
    migrations_skipped = []

    try:
        with engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS applied_migrations (
                    id SERIAL PRIMARY KEY,
                    version VARCHAR(255) UNIQUE NOT NULL,
                    applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );
            """))

            if not os.path.exists(migration_dir):
                logger.error(f"❌ Migration directory does not exist: {migration_dir}")
                raise FileNotFoundError(f"Migration directory not found: {migration_dir}")

            migration_files = [f for f in os.listdir(migration_dir) if re.match(r"V(\d+)__.*\.sql", f)]
            migrations = sorted(
                migration_files,
                key=lambda f: int(re.match(r"V(\d+)__.*\.sql", f).group(1))
            )

            result = conn.execute(text("SELECT version, applied_at FROM applied_migrations ORDER BY version::int"))
            applied_migrations = {row[0]: row[1] for row in result.fetchall()}
            logger.info(f"Currently applied migrations: {sorted(applied_migrations.keys(), key=int)}")

            for migration_file in migrations:
                version = re.match(r"V(\d+)__.*\.sql", migration_file).group(1)

                if version in applied_migrations:
                    logger.info(f"⏭️ Migration {migration_file} already applied at {applied_migrations[version]}. Skipping.")
                    migrations_skipped.append(migration_file)
                    continue

                logger.info(f"🔄 Applying migration: {migration_file}")
                with open(os.path.join(migration_dir, migration_file), 'r') as f:
                    sql_script = f.read()

                if not sql_script.strip():
                    logger.warning(f"⚠️ Migration {migration_file} is empty")
                    continue

                try:
                    conn.execute(text(sql_script))
                    conn.execute(text("INSERT INTO applied_migrations (version) VALUES (:version)"), {"version": version})
                    logger.info(f"✅ Successfully applied migration: {migration_file}")
                    migrations_applied.append(migration_file)
                except Exception as migration_error:
                    logger.error(f"❌ Failed to apply migration {migration_file}: {migration_error}")
                    raise

        logger.info("=== MIGRATION SUMMARY ===")
        logger.info(f"✅ Applied migrations: {len(migrations_applied)} - {migrations_applied}")
        logger.info(f"⏭️ Skipped migrations: {len(migrations_skipped)} - {migrations_skipped}")
        return migrations_applied

    except Exception as e:
        logger.error(f"❌ Error applying migrations: {e}")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', force=True)
    apply_migrations()
