import os

import uvicorn

from logging_config import setup_logging

# Logging has to be configured before app.py is imported
setup_logging(log_level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=os.getenv("LOG_FILE", None))

from constants import APP_ENV, IS_PRODUCTION, MEETING_TTL_SECONDS, SMTP_USER, STRICT_INVARIANTS  # noqa: E402
from logging_config import get_logger  # noqa: E402

logger = get_logger(__name__)


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))

    if IS_PRODUCTION and not SMTP_USER:
        logger.warning("APP_ENV=production but SMTP_USER is not set, OTP delivery will fail")

    logger.info(
        f"Starting meeting signaling server on {host}:{port} "
        f"(env={APP_ENV}, meeting_ttl={MEETING_TTL_SECONDS}s, strict_invariants={STRICT_INVARIANTS})"
    )
    # Meetings, codes and tokens live in this process only, so never more than one worker
    uvicorn.run("app:app", host=host, port=port, workers=1)


if __name__ == "__main__":
    main()
