from typing import Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import RedisDsn


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    timeout_seconds: float = Field(default=2.0, alias="REDIS_TIMEOUT_SECONDS")

    @computed_field
    def dsn(self) -> RedisDsn:
        if self.password:
            return RedisDsn(
                f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
            )
        else:
            return RedisDsn(f"redis://{self.host}:{self.port}/{self.db}")


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    issuer: str = Field(default="https://quiz-rooms.local", alias="JWT_ISSUER")
    application_id: str = Field(default="quiz-rooms", alias="JWT_APPLICATION_ID")
    token_lifetime_seconds: int = Field(
        default=12 * 3600, alias="JWT_TOKEN_LIFETIME_SECONDS"
    )


class QuizSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    # "memory" keeps rooms in-process; "redis" shares them across processes
    store_backend: str = Field(default="memory", alias="QUIZ_STORE_BACKEND")
    code_length: int = Field(default=5, alias="QUIZ_CODE_LENGTH")
    code_attempts: int = Field(default=5, alias="QUIZ_CODE_ATTEMPTS")
    points_per_correct: int = Field(default=10, alias="QUIZ_POINTS_PER_CORRECT")
    default_timer_seconds: int = Field(default=30, alias="QUIZ_DEFAULT_TIMER_SECONDS")
    min_timer_seconds: int = Field(default=10, alias="QUIZ_MIN_TIMER_SECONDS")
    max_timer_seconds: int = Field(default=120, alias="QUIZ_MAX_TIMER_SECONDS")
    max_questions: int = Field(default=20, alias="QUIZ_MAX_QUESTIONS")
    # "reset" wipes score/answers on rejoin, "resume" keeps them
    rejoin_policy: str = Field(default="reset", alias="QUIZ_REJOIN_POLICY")
    room_ttl_seconds: int = Field(default=3600, alias="QUIZ_ROOM_TTL_SECONDS")
    sweep_interval_seconds: int = Field(
        default=60, alias="QUIZ_SWEEP_INTERVAL_SECONDS"
    )
    tick_seconds: float = Field(default=1.0, alias="QUIZ_TICK_SECONDS")


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="quiz-rooms", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    redis: RedisSettings = Field(default_factory=lambda: RedisSettings())
    jwt: JWTSettings = Field(default_factory=lambda: JWTSettings())
    quiz: QuizSettings = Field(default_factory=lambda: QuizSettings())

    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")

    # Model provider selection: "google" or "openrouter"
    model_provider: str = Field(default="google", alias="MODEL_PROVIDER")
    quiz_model_name: str = Field(default="gemini-2.5-flash", alias="QUIZ_MODEL_NAME")
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash", alias="OPENROUTER_MODEL"
    )


settings = Settings()
