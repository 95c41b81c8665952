"""Worker settings."""
from functools import lru_cache

from pydantic_settings import BaseSettings

from dbdump_core.resume import DumpOptions, MAX_RUN_TIME


class Settings(BaseSettings):
    """Application settings."""

    database_url: str = "mysql+pymysql://root@mysql:3306/app"
    redis_url: str = "redis://redis:6379/0"
    queue_name: str = "default"
    sqlite_path: str = "/data/jobs.db"
    backup_dir: str = "/data/backups"
    table_prefix: str = ""
    compress: bool = True
    charset: str = "utf-8"
    fetch_rows: int = 1000
    max_run_time: float = MAX_RUN_TIME
    mysqldump_path: str | None = None
    use_mysqldump: bool = True
    mysqldump_max_allowed_packet: str = "64M"
    stall_seconds: int = 30
    create_lock_seconds: int = 300

    class Config:
        env_file = ".env"
        extra = "ignore"

    def dump_options(self) -> DumpOptions:
        return DumpOptions(
            backup_dir=self.backup_dir,
            table_prefix=self.table_prefix,
            compress=self.compress,
            charset=self.charset,
            fetch_rows=self.fetch_rows,
            max_run_time=self.max_run_time,
            mysqldump_path=self.mysqldump_path,
            use_mysqldump=self.use_mysqldump,
            max_allowed_packet=self.mysqldump_max_allowed_packet,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
