from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_host: str = "localhost"
    db_port: int = 5432
    db_username: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "delay_risk"
    database_url: str | None = None

    # Risk assessment pipeline (predicted-delay -> risk-assessed)
    pipeline_enabled: bool = True
    pipeline_max_concurrency: int = 8
    pipeline_max_delivery_attempts: int = 5
    pipeline_poll_interval_seconds: float = 1.0
    pipeline_lease_seconds: int = 60
    pipeline_unhealthy_after_publish_failures: int = 5
    pipeline_receive_retry_seconds: float = 1.0
    pipeline_unhealthy_after_receive_failures: int = 5
    pipeline_listener_timeout_seconds: float = 5.0

    # Risk factor lookup: "database" | "http" | "static"
    risk_factor_source: str = "database"
    factor_lookup_timeout_seconds: float = 2.0
    risk_factor_api_url: str | None = None
    risk_factor_api_key: str | None = None
    risk_factor_cache_ttl_seconds: int = 300
    vendor_unreliable_delay_percentage: float = 25.0

    port: int = 8000
    env: str = "development"
    frontend_url: str = "http://localhost:3000"

    model_config = {"env_file": ".env", "extra": "ignore", "env_file_encoding": "utf-8"}

    def get_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.db_username}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
