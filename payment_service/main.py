from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import asyncio
from contextlib import asynccontextmanager

from common import config as common_config, database, messages, redis_client
from common.database import get_db_session
from common.errors import MissingFieldsError
from common.kafka_client import EventLogRelay
from common.queue_client import DurableQueue
from . import config, crud, schemas
from .processor import PaymentProcessor

# Basic logging setup
logging.basicConfig(level=common_config.LOG_LEVEL, format=common_config.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Payment Service starting up...")
    await database.create_tables()

    redis = await redis_client.connect_redis()
    queue = DurableQueue(redis, group=config.QUEUE_CONSUMER_GROUP) if redis else None
    events = EventLogRelay(config.KAFKA_CLIENT_ID)
    await events.start()
    app.state.processor = PaymentProcessor(database.session_factory(), queue, events)

    consumer_task = None
    if queue is not None:
        logger.info("Starting payment-request consumer task...")
        consumer_task = asyncio.create_task(queue.consume(
            messages.PAYMENT_REQUEST_QUEUE,
            app.state.processor.on_payment_requested,
            messages.PaymentRequestMessage,
        ))
    else:
        logger.warning("Queue unavailable - payment requests will not be consumed")

    yield

    logger.info("Payment Service shutting down...")
    if consumer_task:
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            logger.info("Payment-request consumer task cancelled.")
        except Exception as e:
            logger.error(f"Exception during consumer task shutdown: {e}")
    await events.stop()
    await redis_client.close_redis()
    await database.dispose_engine()


app = FastAPI(
    title="Payment Service",
    description="Settles payment requests from the queue (simulated) and announces completed payments.",
    version="0.1.0",
    lifespan=lifespan
)


def get_processor(request: Request) -> PaymentProcessor:
    return request.app.state.processor


@app.get("/health", tags=["Monitoring"], summary="Health Check")
async def health_check():
    if await database.ping():
        return {"status": "ok", "service": "payment-service", "database": "connected"}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "service": "payment-service", "database": "disconnected"},
    )


@app.post(
    "/payments",
    response_model=schemas.PaymentRead,
    status_code=status.HTTP_201_CREATED,
    tags=["Payments"],
    summary="Process Payment"
)
async def process_payment_endpoint(
    request_data: schemas.CreatePaymentRequest,
    processor: PaymentProcessor = Depends(get_processor),
):
    """Synchronous counterpart of the payment-request consumer; returns the recorded payment."""
    try:
        return await processor.process_payment_direct(
            request_data.order_id,
            request_data.user_id,
            request_data.amount,
            request_data.payment_method,
        )
    except MissingFieldsError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        logger.exception("Payment processing error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Payment processing failed")


@app.get("/payments/{payment_id}", response_model=schemas.PaymentRead, tags=["Payments"], summary="Get Payment")
async def get_payment_endpoint(payment_id: int, db: AsyncSession = Depends(get_db_session)):
    db_payment = await crud.get_payment(db, payment_id)
    if db_payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return db_payment


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.APP_HOST, port=config.APP_PORT)
