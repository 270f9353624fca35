from fastapi import FastAPI, HTTPException, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging
import asyncio
from contextlib import asynccontextmanager

from common import config as common_config, database, messages, redis_client
from common.database import get_db_session
from common.errors import MissingFieldsError
from common.kafka_client import EventLogRelay
from common.queue_client import DurableQueue
from . import config, crud, schemas
from .orchestrator import OrderOrchestrator

# Configure logging
logging.basicConfig(level=common_config.LOG_LEVEL, format=common_config.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Order Service starting up...")
    await database.create_tables()

    redis = await redis_client.connect_redis()
    queue = DurableQueue(redis, group=config.QUEUE_CONSUMER_GROUP) if redis else None
    events = EventLogRelay(config.KAFKA_CLIENT_ID)
    await events.start()
    app.state.orchestrator = OrderOrchestrator(database.session_factory(), queue, events)

    consumer_task = None
    if queue is not None:
        logger.info("Starting payment-completed consumer task...")
        consumer_task = asyncio.create_task(queue.consume(
            messages.PAYMENT_COMPLETED_QUEUE,
            app.state.orchestrator.on_payment_completed,
            messages.PaymentCompletedMessage,
        ))
    else:
        logger.warning("Queue unavailable - orders will not be moved to paid")

    yield # Application runs here

    logger.info("Order Service shutting down...")
    if consumer_task:
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            logger.info("Payment-completed consumer task cancelled.")
        except Exception as e:
            logger.error(f"Exception during consumer task shutdown: {e}")
    await events.stop()
    await redis_client.close_redis()
    await database.dispose_engine()


app = FastAPI(
    title="Order Service",
    description="Creates orders, requests payment through the queue and moves orders to paid on payment completion.",
    version="0.1.0",
    lifespan=lifespan
)


def get_orchestrator(request: Request) -> OrderOrchestrator:
    return request.app.state.orchestrator


@app.get("/health", tags=["Monitoring"], summary="Health Check")
async def health_check():
    if await database.ping():
        return {"status": "ok", "service": "order-service", "database": "connected"}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "service": "order-service", "database": "disconnected"},
    )


@app.post(
    "/orders",
    response_model=schemas.OrderRead,
    status_code=status.HTTP_201_CREATED,
    tags=["Orders"],
    summary="Create Order"
)
async def create_order_endpoint(
    request_data: schemas.CreateOrderRequest,
    orchestrator: OrderOrchestrator = Depends(get_orchestrator),
):
    """Stores a pending order and hands it to the payment flow."""
    try:
        return await orchestrator.create_order(request_data.user_id, request_data.items, request_data.total_amount)
    except MissingFieldsError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        logger.exception("Create order error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create order")


@app.get("/orders", response_model=List[schemas.OrderRead], tags=["Orders"], summary="List User Orders")
async def list_orders_endpoint(user_id: int = Query(..., alias="userId"), db: AsyncSession = Depends(get_db_session)):
    return await crud.list_orders_for_user(db, user_id)


@app.get("/orders/{order_id}", response_model=schemas.OrderRead, tags=["Orders"], summary="Get Order")
async def get_order_endpoint(order_id: int, db: AsyncSession = Depends(get_db_session)):
    db_order = await crud.get_order(db, order_id)
    if db_order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return db_order


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.APP_HOST, port=config.APP_PORT)
