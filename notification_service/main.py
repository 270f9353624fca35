from fastapi import FastAPI, HTTPException, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging
import asyncio
from contextlib import asynccontextmanager

from common import config as common_config, database, messages, redis_client
from common.database import get_db_session
from common.errors import MissingFieldsError
from common.kafka_client import consume_events
from common.queue_client import DurableQueue
from . import config, crud, schemas
from .bridge import FanOutBridge
from .publisher import NotificationPublisher
from .registry import ConnectionRegistry, Subscription

# Configure logging
logging.basicConfig(level=common_config.LOG_LEVEL, format=common_config.LOG_FORMAT)
logger = logging.getLogger(__name__)


async def _stop_task(task: asyncio.Task, name: str):
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info(f"{name} task cancelled.")
    except Exception as e:
        logger.error(f"Exception during {name} task shutdown: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Notification Service starting up...")
    await database.create_tables()

    registry = ConnectionRegistry()
    redis = await redis_client.connect_redis()
    bridge = FanOutBridge(redis, registry)
    app.state.registry = registry
    app.state.publisher = NotificationPublisher(database.session_factory(), registry, bridge)

    shutdown_event = asyncio.Event()
    tasks = {}
    if redis is not None:
        tasks["Fan-out bridge"] = asyncio.create_task(bridge.run(shutdown_event))
        queue = DurableQueue(redis, group=config.QUEUE_CONSUMER_GROUP)
        tasks["Notifications queue consumer"] = asyncio.create_task(queue.consume(
            messages.NOTIFICATIONS_QUEUE,
            app.state.publisher.on_notification_requested,
            messages.NotificationRequestMessage,
        ))
    else:
        logger.warning("Redis unavailable - fan-out and the notifications queue are disabled, local delivery only")
    if common_config.KAFKA_ENABLED:
        tasks["Event log consumer"] = asyncio.create_task(consume_events(
            config.KAFKA_TOPICS, config.KAFKA_CONSUMER_GROUP, app.state.publisher.on_event
        ))

    yield

    logger.info("Notification Service shutting down...")
    shutdown_event.set()
    for name, task in tasks.items():
        await _stop_task(task, name)
    await redis_client.close_redis()
    await database.dispose_engine()


app = FastAPI(
    title="Notification Service",
    description="Stores notifications and pushes them to subscribed WebSocket clients across instances.",
    version="0.1.0",
    lifespan=lifespan
)


def get_publisher(request: Request) -> NotificationPublisher:
    return request.app.state.publisher


@app.get("/health", tags=["Monitoring"], summary="Health Check")
async def health_check():
    if await database.ping():
        return {"status": "ok", "service": "notification-service", "database": "connected"}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "service": "notification-service", "database": "disconnected"},
    )


@app.post(
    "/notifications",
    response_model=schemas.NotificationRead,
    status_code=status.HTTP_201_CREATED,
    tags=["Notifications"],
    summary="Create Notification"
)
async def create_notification_endpoint(
    request_data: schemas.CreateNotificationRequest,
    publisher: NotificationPublisher = Depends(get_publisher),
):
    try:
        return await publisher.create_notification(
            request_data.user_id,
            request_data.type,
            request_data.title,
            request_data.message,
            request_data.data,
        )
    except MissingFieldsError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        logger.exception("Create notification error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create notification")


@app.get("/notifications", response_model=List[schemas.NotificationRead], tags=["Notifications"], summary="List User Notifications")
async def list_notifications_endpoint(user_id: int = Query(..., alias="userId"), db: AsyncSession = Depends(get_db_session)):
    return await crud.list_notifications_for_user(db, user_id)


@app.websocket("/ws")
async def notifications_socket(websocket: WebSocket):
    """
    Client sends {"type": "subscribe", "userId": ...}; the server answers once
    with that user's recent history, then pushes each new notification.
    """
    await websocket.accept()
    registry: ConnectionRegistry = websocket.app.state.registry
    publisher: NotificationPublisher = websocket.app.state.publisher
    subscription = Subscription(websocket)
    user_id = None
    logger.info("New WebSocket connection")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                subscribe = messages.SubscribeMessage.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring WebSocket message {raw[:200]}: {e}")
                continue

            if user_id is not None and user_id != subscribe.user_id:
                registry.remove(user_id, subscription)
            user_id = subscribe.user_id
            # Pushes wait until the history frame is out
            subscription.hold()
            registry.add(user_id, subscription)

            try:
                history = await publisher.history(user_id)
            except Exception as e:
                logger.error(f"Error fetching notifications for user {user_id}: {e}")
                await subscription.release()
                continue
            await subscription.release(messages.NotificationHistory(data=history))
    except WebSocketDisconnect:
        logger.info(f"WebSocket closed (user {user_id})")
    finally:
        if user_id is not None:
            registry.remove(user_id, subscription)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.APP_HOST, port=config.APP_PORT)
