import asyncio
import logging
from typing import Awaitable

logger = logging.getLogger(__name__)


async def publish_isolated(description: str, publish: Awaitable) -> bool:
    """Awaits a single publish and reports whether it went through.

    A failing publish is logged and turned into ``False``; it never raises
    into the caller's flow.
    """
    try:
        result = await publish
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Publish failed ({description}): {e}")
        return False
    if result is False:
        logger.warning(f"Publish skipped ({description})")
        return False
    logger.debug(f"Published {description}")
    return True


async def publish_all(*publishes) -> list[bool]:
    """Runs ``(description, awaitable)`` pairs side by side, each isolated from the others."""
    return list(await asyncio.gather(*(publish_isolated(d, p) for d, p in publishes)))
