"""Run the signaling relay: ``python -m relay``."""

import uvicorn

from relay.server.settings import RelaySettings


def main() -> None:
    settings = RelaySettings()
    uvicorn.run("relay.server.app:get_app", factory=True, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
