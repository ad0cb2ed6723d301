"""
Configuration settings for the Game Recommendation Engine

Manages all configuration parameters including:
- Database connection for the catalog, session history and arm store
- Redis arm store settings
- Bandit and ranking parameters
- API and logging settings
"""

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.config import BanditConfig, DatabaseConfig, DiversityConfig

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database settings
    database_url: str = Field(
        default="sqlite:///launcher.db",
        description="SQLAlchemy URL of the launcher database"
    )
    sql_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )

    # Arm store settings
    arm_store: Literal["sql", "redis"] = Field(
        default="sql",
        description="Back end used to persist arm snapshots"
    )
    redis_host: str = Field(
        default="localhost",
        description="Redis server host"
    )
    redis_port: int = Field(
        default=6379,
        description="Redis server port"
    )
    redis_password: Optional[str] = Field(
        default=None,
        description="Redis server password"
    )
    redis_db: int = Field(
        default=0,
        description="Redis database index"
    )
    redis_arm_key: str = Field(
        default="bandit_models",
        description="Redis hash holding one arm snapshot per game"
    )

    # Contextual Bandit settings
    bandit_alpha: float = Field(
        default=0.5,
        description="Exploration parameter for LinUCB algorithm"
    )
    regularization: float = Field(
        default=1.0,
        description="Ridge prior placed on the diagonal of each arm"
    )
    cold_start_penalty: float = Field(
        default=0.3,
        description="Score multiplier for games with no training data"
    )
    reward_policy: Literal["ramp", "stepped"] = Field(
        default="ramp",
        description="Session duration to reward mapping"
    )
    max_vocabulary_size: Optional[int] = Field(
        default=None,
        description="Maximum number of genres plus tags used as features"
    )

    # Diversity settings
    use_mmr: bool = Field(
        default=False,
        description="Re-rank results with Maximal Marginal Relevance"
    )
    mmr_lambda: float = Field(
        default=0.7,
        description="Relevance weight for MMR re-ranking"
    )
    use_score_jitter: bool = Field(
        default=False,
        description="Add random variation scaled by the request diversity factor"
    )

    # Recommendation settings
    default_recommendation_count: int = Field(
        default=3,
        description="Number of recommendations when the caller does not specify one"
    )
    max_recommendations: int = Field(
        default=20,
        description="Maximum number of recommendations per request"
    )

    # API settings
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Log file path"
    )

    def to_bandit_config(self) -> BanditConfig:
        """Build the bandit configuration from these settings."""
        return BanditConfig(
            alpha=self.bandit_alpha,
            regularization=self.regularization,
            cold_start_penalty=self.cold_start_penalty,
            reward_policy=self.reward_policy,
            max_vocabulary_size=self.max_vocabulary_size,
            diversity=DiversityConfig(
                use_mmr=self.use_mmr,
                mmr_lambda=self.mmr_lambda,
                use_score_jitter=self.use_score_jitter,
            ),
        )

    def to_database_config(self) -> DatabaseConfig:
        """Build the database configuration from these settings."""
        return DatabaseConfig(url=self.database_url, echo=self.sql_echo)


# Global settings instance
_settings = None


def get_settings() -> Settings:
    """Get the global settings instance, using the ENVIRONMENT preset when one is set."""
    global _settings
    if _settings is None:
        _settings = get_environment_settings() if os.getenv("ENVIRONMENT") else Settings()
    return _settings


def update_settings(**kwargs) -> Settings:
    """Update settings with new values."""
    global _settings
    if _settings is None:
        _settings = Settings()

    for key, value in kwargs.items():
        if hasattr(_settings, key):
            setattr(_settings, key, value)

    return _settings


# Environment-specific configurations
class DevelopmentSettings(Settings):
    """Development environment settings."""
    debug: bool = True
    log_level: str = "DEBUG"
    database_url: str = "sqlite:///launcher_dev.db"


class ProductionSettings(Settings):
    """Production environment settings."""
    debug: bool = False
    log_level: str = "WARNING"


class TestingSettings(Settings):
    """Testing environment settings."""
    debug: bool = True
    log_level: str = "DEBUG"
    database_url: str = "sqlite:///launcher_test.db"


def get_environment_settings(environment: str = None) -> Settings:
    """Get settings for a specific environment."""
    if environment is None:
        environment = os.getenv("ENVIRONMENT", "development")

    if environment == "production":
        return ProductionSettings()
    elif environment == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


# Configuration validation
def validate_settings(settings: Settings) -> bool:
    """Validate configuration settings."""
    errors = []

    # Validate database URL
    if "://" not in settings.database_url:
        errors.append("Invalid database URL format")

    # Validate Redis settings
    if not (0 <= settings.redis_port <= 65535):
        errors.append("Invalid Redis port number")

    # Validate bandit parameters
    if not (0 < settings.bandit_alpha <= 10):
        errors.append("Bandit alpha must be between 0 and 10")

    if settings.regularization <= 0:
        errors.append("Regularization must be positive")

    if not (0 <= settings.cold_start_penalty <= 1):
        errors.append("Cold start penalty must be between 0 and 1")

    if not (0 <= settings.mmr_lambda <= 1):
        errors.append("MMR lambda must be between 0 and 1")

    if settings.max_vocabulary_size is not None and settings.max_vocabulary_size < 0:
        errors.append("Maximum vocabulary size cannot be negative")

    # Validate API settings
    if not (1 <= settings.api_port <= 65535):
        errors.append("Invalid API port number")

    if settings.max_recommendations <= 0:
        errors.append("Max recommendations must be positive")

    if not (0 < settings.default_recommendation_count <= settings.max_recommendations):
        errors.append("Default recommendation count must be between 1 and max recommendations")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True


# Default configuration for quick setup
DEFAULT_CONFIG = {
    "database_url": "sqlite:///launcher.db",
    "arm_store": "sql",
    "redis_host": "localhost",
    "redis_port": 6379,
    "bandit_alpha": 0.5,
    "regularization": 1.0,
    "cold_start_penalty": 0.3,
    "reward_policy": "ramp",
    "use_mmr": False,
    "mmr_lambda": 0.7,
    "api_host": "127.0.0.1",
    "api_port": 8000,
    "debug": False,
    "log_level": "INFO",
    "max_recommendations": 20,
}


def create_default_config_file(filepath: str = ".env"):
    """Create a default configuration file."""
    config_content = []

    for key, value in DEFAULT_CONFIG.items():
        if isinstance(value, str):
            config_content.append(f'{key.upper()}="{value}"')
        else:
            config_content.append(f'{key.upper()}={value}')

    config_content.extend([
        "",
        "# Optional: cap the number of genre/tag features",
        "# MAX_VOCABULARY_SIZE=200",
        "",
        "# Optional: Environment",
        "# ENVIRONMENT=development"
    ])

    with open(filepath, 'w') as f:
        f.write('\n'.join(config_content))

    print(f"Default configuration file created: {filepath}")


if __name__ == "__main__":
    # Create default config file
    create_default_config_file()

    # Test settings
    settings = get_settings()
    print("Current settings:")
    print(f"Database URL: {settings.database_url}")
    print(f"Arm store: {settings.arm_store}")
    print(f"Bandit Alpha: {settings.bandit_alpha}")
    print(f"Reward policy: {settings.reward_policy}")
    print(f"API Port: {settings.api_port}")

    # Validate settings
    try:
        validate_settings(settings)
        print("Settings validation: PASSED")
    except ValueError as e:
        print(f"Settings validation: FAILED - {e}")
