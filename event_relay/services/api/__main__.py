"""Module entrypoint for running the relay API service with shared settings."""

import uvicorn

from event_relay.core.config import get_settings


def main() -> int:
    """Run the relay service using configured host and port."""

    settings = get_settings()
    uvicorn.run(
        "event_relay.services.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        ws="websockets",
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
