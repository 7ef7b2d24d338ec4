# pipeline/utils.py
import asyncio
import inspect
import logging
import time


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


async def call_capability(fn, *args):
    """
    Await an external capability whether it is a coroutine function or a
    blocking callable. Blocking calls go to a worker thread so the event
    loop keeps ticking.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result
