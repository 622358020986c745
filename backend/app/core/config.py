from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = Field(default="dev")  # dev|prod|test
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="Africa/Lagos")

    # Security (tokens are issued by the identity service, we only verify them)
    JWT_SECRET: str = Field(default="change-me")
    JWT_ALG: str = Field(default="HS256")
    JWT_EXPIRES_MIN: int = Field(default=60 * 12)

    # DB
    DATABASE_URL: str = Field(default="postgresql+psycopg://app:app@db:5432/app")

    # CORS
    CORS_ORIGINS: str = Field(default="http://localhost:5173,http://localhost")

    # Celery / Redis
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Files
    UPLOAD_DIR: str = Field(default="/app/data/uploads")
    EXPORT_DIR: str = Field(default="/app/data/exports")

    # Bulk import
    IMPORT_MAX_FILE_MB: int = Field(default=50)
    IMPORT_ALLOWED_EXTENSIONS: str = Field(default=".csv,.xlsx")
    IMPORT_PROGRESS_EVERY: int = Field(default=50)
    IMPORT_CIRCUIT_BREAK_THRESHOLD: int = Field(default=25)  # 0 disables
    IMPORT_DUPLICATE_FIELDS: str = Field(default="patientName,species,diagnosisDate")

    # Seed (dev)
    SEED_DEMO: bool = Field(default=True)
    DEMO_CLINIC_NAME: str = Field(default="Demo Veterinary Clinic")
    DEMO_ADMIN_EMAIL: str = Field(default="admin@example.com")

    @property
    def allowed_extensions(self) -> tuple[str, ...]:
        return tuple(e.strip().lower() for e in self.IMPORT_ALLOWED_EXTENSIONS.split(",") if e.strip())

    @property
    def duplicate_fields(self) -> tuple[str, ...]:
        return tuple(f.strip() for f in self.IMPORT_DUPLICATE_FIELDS.split(",") if f.strip())


settings = Settings()
