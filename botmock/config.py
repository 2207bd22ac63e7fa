from datetime import datetime
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_BOT_TOKEN = "1234567890:TEST_TOKEN_FOR_MOCK_SERVER"


class Settings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 0  # 0 = ephemeral port chosen by the OS
    port_range: str | None = None  # "8100-8199", tried in order when set

    # Placeholder only, never sent to a real backend
    bot_token: str = DEFAULT_BOT_TOKEN

    reference_timestamp: datetime | None = None
    dispatch_timeout: float = 10.0

    user_id: int = 123456789
    chat_id: int | None = None

    log_level: str = "WARNING"

    class Config:
        env_prefix = "BOTMOCK_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @field_validator("port_range")
    @classmethod
    def _check_port_range(cls, value: str | None) -> str | None:
        if value is None:
            return None
        low, sep, high = value.partition("-")
        if not sep or not low.strip().isdigit() or not high.strip().isdigit():
            raise ValueError(f"port_range must look like '8100-8199', got {value!r}")
        if int(low) > int(high):
            raise ValueError(f"port_range start is above its end: {value!r}")
        return value

    def port_candidates(self) -> list[int]:
        """Ports to try in order; [0] means let the OS pick."""
        if self.port_range is not None:
            low, _, high = self.port_range.partition("-")
            return list(range(int(low), int(high) + 1))
        return [self.port]


@lru_cache
def get_settings() -> Settings:
    return Settings()
