"""Environment-driven settings shared by the relay API and the scan CLI."""

from functools import lru_cache
from typing import Callable

from pydantic_settings import BaseSettings, SettingsConfigDict

WINDOW_POLICY_ADVANCE = "advance"
WINDOW_POLICY_RETRY_ON_FAILURE = "retry_on_failure"
_WINDOW_POLICIES = (WINDOW_POLICY_ADVANCE, WINDOW_POLICY_RETRY_ON_FAILURE)


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "Chain Event Relay"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    WS_PATH: str = "/ws"
    ETH_RPC_URL: str = ""
    CONTRACT_ADDRESS: str = ""
    FROM_BLOCK: str = ""
    TO_BLOCK: str = ""
    SCAN_ENABLED: bool = True
    SCAN_INTERVAL_S: float = 1.0
    SCAN_BLOCK_STEP: int = 1000
    SCAN_TIMEOUT_S: float = 30.0
    SCAN_MAX_CONCURRENCY: int = 8
    SCAN_WINDOW_POLICY: str = WINDOW_POLICY_ADVANCE
    SUBSCRIBER_QUEUE_SIZE: int = 256

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def contract_addresses(self) -> tuple[str, ...]:
        """Return contract addresses from CONTRACT_ADDRESS, deduplicated case-insensitively."""

        return self._split_csv(self.CONTRACT_ADDRESS, transform=str.lower)

    def from_block(self) -> int:
        """Return the initial scan start block; unset or invalid values mean genesis."""

        block = self._parse_block(self.FROM_BLOCK)
        return 0 if block is None else block

    def to_block(self) -> int | None:
        """Return the initial exclusive end block, or None for the latest block."""

        return self._parse_block(self.TO_BLOCK)

    def block_step(self) -> int:
        return max(1, self.SCAN_BLOCK_STEP)

    def initial_window(self) -> tuple[int, int]:
        """Return the first polling window; an open end is pinned to one step past the start."""

        from_block = self.from_block()
        to_block = self.to_block()
        if to_block is None:
            to_block = from_block + self.block_step()
        return from_block, to_block

    def window_policy(self) -> str:
        """Return the window advancement policy, defaulting unknown values to `advance`."""

        policy = self.SCAN_WINDOW_POLICY.strip().lower()
        if policy in _WINDOW_POLICIES:
            return policy
        return WINDOW_POLICY_ADVANCE

    def scan_timeout_s(self) -> float | None:
        """Return the per-query deadline; zero or negative disables it."""

        if self.SCAN_TIMEOUT_S <= 0:
            return None
        return self.SCAN_TIMEOUT_S

    @staticmethod
    def _parse_block(value: str) -> int | None:
        raw = value.strip()
        if not raw:
            return None
        try:
            block = int(raw, 0) if raw.lower().startswith("0x") else int(raw)
        except ValueError:
            return None
        return max(0, block)

    @staticmethod
    def _split_csv(value: str, transform: Callable[[str], str]) -> tuple[str, ...]:
        """Split comma-separated values while removing empty entries and duplicates."""

        items: list[str] = []
        seen: set[str] = set()

        for raw in value.split(","):
            item = transform(raw.strip())
            if not item or item in seen:
                continue
            seen.add(item)
            items.append(item)

        return tuple(items)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
