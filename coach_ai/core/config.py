from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from dotenv import load_dotenv



# 2. Get the path to the .env file
CONFIG_DIR = Path(__file__).resolve().parent
# Assuming .env is in the project root (two levels up from coach_ai/core)
PROJECT_ROOT = CONFIG_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT / '.env'

# Load environment variables from .env file
load_dotenv(ENV_FILE_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding='utf-8',
        extra='ignore'
    )


    DEBUG_MODE: bool = False
    LOG_JSON: bool = False
    DEFAULT_LANGUAGE: str = "en"


    SEALION_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    GROQ_API_KEY: str = ""
    GEMINI_API_KEY: str = ""

    # Models
    SEALION_BASE_URL: str = "https://api.sea-lion.ai/v1"
    SEALION_MODEL: str = "aisingapore/Gemma-SEA-LION-v3-9B-IT"
    OPENAI_MODEL: str = "gpt-4o-mini"
    GROQ_MODEL: str = "llama-3.3-70b-versatile"
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # Provider ordering (lower value is tried first within a tier)
    SEALION_PRIORITY: int = 1
    OPENAI_PRIORITY: int = 2
    GROQ_PRIORITY: int = 3
    GEMINI_PRIORITY: int = 4

    # Service Specific Limits (Requests Per Minute)
    SEALION_RPM: int = 60  # SeaLion asks for ~1 request per second
    OPENAI_RPM: int = 500
    GROQ_RPM: int = 30
    GEMINI_RPM: int = 15
    DEFAULT_RPM: int = 60

    # Retry Configuration
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 60.0
    RETRY_JITTER: float = 1.0

    # Timeout Configuration (seconds)
    PROVIDER_TIMEOUT_SECONDS: float = 15.0  # Per attempt
    GENERATION_DEADLINE_SECONDS: float = 40.0  # Whole generate() call, then template fallback

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = 3
    CIRCUIT_RECOVERY_SECONDS: float = 300.0  # 5 minutes

    # Cache Configuration
    CACHE_CAPACITY: int = 100
    CACHE_EVICTION_FRACTION: float = 0.1
    CACHE_TTL_QUESTION: float = 30 * 60
    CACHE_TTL_PERSONA: float = 60 * 60
    CACHE_TTL_ASSESSMENT: float = 15 * 60
    CACHE_TTL_TRANSLATION: float = 24 * 60 * 60
    FALLBACK_CACHE_TTL: float = 60.0  # Short, so an outage is retried soon

    # Session gate
    SESSION_CALL_LIMIT: int = 30


# Initialize settings and validate API keys
settings = Settings()
