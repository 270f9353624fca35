import os
from dotenv import load_dotenv

load_dotenv() # Load .env file from project root if running locally

DATABASE_USER = os.getenv("POSTGRES_USER", "soa_user")
DATABASE_PASSWORD = os.getenv("POSTGRES_PASSWORD", "soa_password")
DATABASE_HOST = os.getenv("POSTGRES_HOST", "postgres") # Docker service name
DATABASE_PORT = os.getenv("POSTGRES_PORT", "5432")
DATABASE_NAME = os.getenv("POSTGRES_DB", "soa_db")

# Async database URL for SQLAlchemy, overridable as a whole
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DATABASE_USER}:{DATABASE_PASSWORD}@{DATABASE_HOST}:{DATABASE_PORT}/{DATABASE_NAME}",
)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))

KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
KAFKA_ENABLED = os.getenv("KAFKA_ENABLED", "true").lower() == "true"

# Durable queue (Redis Streams) settings
QUEUE_CONSUMER_NAME = os.getenv("QUEUE_CONSUMER_NAME", os.getenv("HOSTNAME", "consumer-1"))
QUEUE_BLOCK_MS = int(os.getenv("QUEUE_BLOCK_MS", "5000"))
# 0 keeps redelivering a failing message forever; anything above dead-letters after that many deliveries
QUEUE_MAX_DELIVERIES = int(os.getenv("QUEUE_MAX_DELIVERIES", "0"))
# Entries another consumer left unacknowledged this long are claimed by a live one
QUEUE_CLAIM_IDLE_MS = int(os.getenv("QUEUE_CLAIM_IDLE_MS", "60000"))
QUEUE_RETRY_DELAY_SECONDS = float(os.getenv("QUEUE_RETRY_DELAY_SECONDS", "1.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
