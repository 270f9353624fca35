import os

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "3002"))

# Consumer group reading the payment-completed queue
QUEUE_CONSUMER_GROUP = os.getenv("QUEUE_CONSUMER_GROUP", "order-service")
KAFKA_CLIENT_ID = os.getenv("KAFKA_CLIENT_ID", "order-service")

# order.created has no consumer of its own, keep the stream bounded
ORDER_CREATED_QUEUE_MAXLEN = int(os.getenv("ORDER_CREATED_QUEUE_MAXLEN", "10000"))
