"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
The calculation modules never read this directly: callers turn it into a
CalculationContext and pass that in.
"""

from pydantic_settings import BaseSettings
from typing import Optional

from .rate_math import CalculationContext, RoundingMode


class EngineConfig(BaseSettings):
    """Loan engine configuration"""

    # Decimal arithmetic
    decimal_precision: int = 12  # Significant digits for divisions and powers
    rounding_mode: str = "HALF_EVEN"  # Applied to money amounts and the math context

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "LOAN_ENGINE_"
        env_file = ".env"
        case_sensitive = False

    def calculation_context(self) -> CalculationContext:
        """Build the explicit calculation context handed to the engine"""
        return CalculationContext(
            precision=self.decimal_precision,
            rounding=RoundingMode.from_name(self.rounding_mode)
        )


# Global configuration instance
config = EngineConfig()


def get_config() -> EngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EngineConfig:
    """Reload configuration from environment"""
    global config
    config = EngineConfig()
    return config
