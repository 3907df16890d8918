from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Tutoring Scheduler'
    app_env: str = 'local'
    app_timezone: str = 'UTC'
    database_url: str = 'sqlite:///./tutoring.db'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    bootstrap_admin_email: str = ''
    bootstrap_admin_password: str = ''
    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    default_cache_ttl: int = 60
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200
    enable_daily_report: bool = True
    daily_report_hour: int = 1
    sendgrid_api_key: str = ''
    sendgrid_api_base: str = 'https://api.sendgrid.com'
    report_sender_email: str = ''
    report_recipient_email: str = ''
    password_reset_url: str = 'http://localhost:3000/reset-password'
    password_reset_minutes: int = 10


settings = Settings()
