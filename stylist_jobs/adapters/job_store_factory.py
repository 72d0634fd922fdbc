"""Factory for creating job store instances."""

from stylist_jobs.adapters.postgres_job_store import PostgresJobStore
from stylist_jobs.adapters.sqlite_job_store import SQLiteJobStore
from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.config.settings import Settings

logger = get_logger(__name__)

JobStore = SQLiteJobStore | PostgresJobStore


def create_job_store(settings: Settings) -> JobStore:
    """Create appropriate job store based on settings.

    Args:
        settings: Application settings

    Returns:
        Job store instance (SQLite or PostgreSQL)

    Raises:
        ValueError: If job_store_type is not supported or the password is missing
        RepositoryError: On connection errors
    """
    if settings.job_store_type == "sqlite":
        logger.info("job_store_sqlite_selected", path=settings.db_path)
        return SQLiteJobStore(db_path=settings.db_path)

    elif settings.job_store_type == "postgres":
        if not settings.postgres_password:
            raise ValueError(
                "POSTGRES_PASSWORD environment variable must be set when using PostgreSQL"
            )

        logger.info(
            "job_store_postgres_selected",
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
        )
        return PostgresJobStore(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
            password=settings.postgres_password.get_secret_value(),
            settings=settings,
        )

    else:
        raise ValueError(
            f"Unsupported job store type: {settings.job_store_type}. "
            f"Must be 'sqlite' or 'postgres'"
        )


__all__ = ["JobStore", "create_job_store"]
