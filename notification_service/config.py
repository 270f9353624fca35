import os
from common import messages

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "3003"))

# Consumer group reading the notifications queue
QUEUE_CONSUMER_GROUP = os.getenv("QUEUE_CONSUMER_GROUP", "notification-service")

KAFKA_CONSUMER_GROUP = os.getenv("KAFKA_CONSUMER_GROUP", "notification-group")
KAFKA_TOPICS = [messages.ORDER_EVENTS_TOPIC, messages.USER_EVENTS_TOPIC]

# Redis pub/sub channel shared by every instance
NOTIFICATION_CHANNEL = os.getenv("NOTIFICATION_CHANNEL", messages.NOTIFICATIONS_CHANNEL)

# How many past notifications a freshly subscribed socket gets
NOTIFICATION_HISTORY_LIMIT = int(os.getenv("NOTIFICATION_HISTORY_LIMIT", "50"))
