"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    SEED_DATA_PATH: str | None = None  # JSON file with users/conversations/messages for dev

    # LLM Configuration
    PLANNER: str = "openai"  # Options: openai, anthropic, tgi, rules
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"

    # Vector index configuration
    VECTOR_DB_HOST: str = "chroma"  # Service name in docker-compose
    VECTOR_DB_PORT: int = 8000
    VECTOR_COLLECTION: str = "courier_messages"
    EMBED_MODEL: str = "all-MiniLM-L6-v2"

    # Engine limits
    MAX_CHAIN_LENGTH: int = 3
    MAX_COMMAND_LENGTH: int = 1000
    TOOL_TIMEOUT_S: float = 20.0
    PLANNER_TIMEOUT_S: float = 30.0

    # Contact matching
    FUZZY_AMBIGUITY_EPSILON: float = 0.1
    FUZZY_CONFIDENCE_FLOOR: float = 0.6
    FUZZY_MIN_SCORE: float = 0.3
    RECENT_CONTACT_BOOST: float = 0.05
    MAX_CLARIFICATION_OPTIONS: int = 5

    # Retrieval
    RAG_TOP_K: int = 20
    RAG_MIN_HITS: int = 5
    RAG_RECENT_FALLBACK: int = 20
    CONVERSATION_QUALIFY_THRESHOLD: float = 0.5
    RECENCY_HALF_LIFE_HOURS: float = 24.0

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
