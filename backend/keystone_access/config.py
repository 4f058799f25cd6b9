from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://keystone:keystone_secret@db:5432/keystone_db"
    JWT_SECRET: str = "keystone-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    FRONTEND_URL: str = "http://localhost:3000"
    GUEST_TOKEN_BYTES: int = 32
    GUEST_TOKEN_CLEANUP_HOURS: int = 24
    MAX_CATEGORY_DEPTH: int = 64
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8081"]

    class Config:
        env_file = ".env"


settings = Settings()
