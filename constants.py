import os

APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"

# Invariant violations raise outside production and degrade to not-found in production
STRICT_INVARIANTS = os.getenv("STRICT_INVARIANTS", "false" if IS_PRODUCTION else "true").lower() in ("1", "true", "yes")

MEETING_TTL_SECONDS = int(os.getenv("MEETING_TTL_SECONDS", 2 * 60 * 60))
CODE_TTL_SECONDS = int(os.getenv("CODE_TTL_SECONDS", 10 * 60))
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", 24 * 60 * 60))
EMPTY_MEETING_GRACE_SECONDS = int(os.getenv("EMPTY_MEETING_GRACE_SECONDS", 5 * 60))
CODE_SWEEP_INTERVAL_SECONDS = int(os.getenv("CODE_SWEEP_INTERVAL_SECONDS", 5 * 60))
MEETING_SWEEP_INTERVAL_SECONDS = int(os.getenv("MEETING_SWEEP_INTERVAL_SECONDS", 5 * 60))

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.ethereal.email")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER", None)
SMTP_PASS = os.getenv("SMTP_PASS", None)
SMTP_FROM = os.getenv("SMTP_FROM", "noreply@securemeeting.com")

# Comma separated STUN/TURN urls handed to each client peer connection
ICE_SERVERS = [url.strip() for url in os.getenv(
    "ICE_SERVERS", "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302"
).split(",") if url.strip()]
