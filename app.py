from contextlib import asynccontextmanager
import os

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from constants import CLIENT_URL
from credentials import CredentialService
from delivery import build_delivery
from logging_config import get_logger, setup_logging
from registry import MeetingRegistry
from relay import SignalingRelay
from routers.auth import auth_router
from routers.meetings import meetings_router
from schemas.meetings import HealthResponse

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One instance of each service per process, all state in memory
    credentials = CredentialService(delivery=build_delivery())
    registry = MeetingRegistry()
    app.state.credentials = credentials
    app.state.registry = registry
    app.state.relay = SignalingRelay(registry)

    credentials.start()
    registry.start()
    logger.info("Meeting broker started")
    try:
        yield
    finally:
        await registry.stop()
        await credentials.stop()
        logger.info("Meeting broker stopped, all in-memory state discarded")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(meetings_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling channel. Every frame is a JSON object with a "type" field."""
    relay: SignalingRelay = websocket.app.state.relay
    connection_id = None
    try:
        connection_id = await relay.connect(websocket)
        message_count = 0
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection_id}")
            await relay.handle_message(connection_id, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        if connection_id:
            await relay.disconnect(connection_id)
