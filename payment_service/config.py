import os

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "3004"))

# Consumer group reading the payment-request queue
QUEUE_CONSUMER_GROUP = os.getenv("QUEUE_CONSUMER_GROUP", "payment-service")
KAFKA_CLIENT_ID = os.getenv("KAFKA_CLIENT_ID", "payment-service")

DEFAULT_PAYMENT_METHOD = os.getenv("DEFAULT_PAYMENT_METHOD", "credit_card")
