"""Room OIDC Bridge - entry point.

Signs users in at an OpenID Connect provider and redirects them to a
conference room with a signed, room scoped JWT:
- /room/{name} starts the login (authorization code + PKCE)
- /callback validates the provider response and mints the room token

Run with `python main.py`, `room-oidc-bridge`, or `uvicorn main:app`.
"""
import logging
from pathlib import Path

from dotenv import load_dotenv

from config import load_config

# Load environment: .env (local override) if present
_env_file = Path(".env")
if _env_file.exists():
    load_dotenv(_env_file)

config = load_config().validate()

# Initialize logging before anything else logs
from logging_config import setup_logging
setup_logging(
    service_name="room-oidc-bridge",
    log_format=config.log_format,
    level=config.log_level,
)
logger = logging.getLogger(__name__)

from oidc_bridge.app import create_app

app = create_app(config)


def run() -> None:
    import uvicorn
    logger.info(f"[STARTUP] Starting server on {config.listen_host}:{config.listen_port}")
    uvicorn.run(app, host=config.listen_host, port=config.listen_port, log_config=None)


# ============== Main Entry Point ==============

if __name__ == "__main__":
    run()
