#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import asyncio
import base64
import functools
import inspect
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import dateutil.parser as parser

from dust_connectors.logger import logger


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime_string(value: str) -> datetime:
    return with_utc_tz(parser.parse(value))


def iso_utc(when: Optional[datetime] = None) -> str:
    if when is None:
        when = utc_now()
    return when.isoformat()


def with_utc_tz(ts: datetime) -> datetime:
    """Ensure the timestmap has a timezone of UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    else:
        return ts.astimezone(timezone.utc)


def to_datetime(value: Union[None, str, datetime]) -> Optional[datetime]:
    """Reads a timestamp stored in a document, which can be missing."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return with_utc_tz(value)
    return parse_datetime_string(value)


def seconds(value: Union[int, float, timedelta]) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


def get_base64_value(content: bytes) -> str:
    """
    Returns the converted file passed into a base64 encoded value
    Args:
           content (byte): Object content in bytes
    """
    return base64.b64encode(content).decode("utf-8")


class CancellableSleeps:
    def __init__(self) -> None:
        self._sleeps = set()

    async def sleep(self, delay: Union[float, int], result=None) -> None:
        task = asyncio.ensure_future(asyncio.sleep(delay, result=result))
        self._sleeps.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            logger.debug("Sleep canceled")
            return result
        finally:
            self._sleeps.remove(task)

    def cancel(self, sig=None) -> None:
        if sig:
            logger.debug(f"Caught {sig}. Cancelling sleeps...")
        else:
            logger.debug("Cancelling sleeps...")

        for task in self._sleeps:
            task.cancel()


class ConcurrentTasks:
    """Async task manager.

    Can be used to trigger concurrent async tasks with a maximum
    concurrency value.

    - `max_concurrency`: max concurrent tasks allowed, default: 5
    Examples:

        # create a task pool with the default max concurrency
        task_pool = ConcurrentTasks()

        # put a task into pool
        # it will block until the task was put successfully
        task = await task_pool.put(coroutine)

        # call join to wait for all tasks in pool to complete
        await task_pool.join()
    """

    def __init__(self, max_concurrency: int = 5) -> None:
        self.tasks = []
        self._sem = asyncio.BoundedSemaphore(max_concurrency)

    def __len__(self) -> int:
        return len(self.tasks)

    def _callback(self, task: asyncio.Task) -> None:
        self.tasks.remove(task)
        self._sem.release()
        if task.cancelled():
            logger.error(f"Task {task.get_name()} was cancelled")
        elif task.exception():
            logger.error(
                f"Exception found for task {task.get_name()}", exc_info=task.exception()
            )

    def _add_task(self, coroutine: Callable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coroutine(), name=name)
        self.tasks.append(task)
        task.add_done_callback(functools.partial(self._callback))
        return task

    async def put(self, coroutine: Callable, name: Optional[str] = None) -> asyncio.Task:
        """Adds a coroutine for immediate execution.

        If the number of running tasks reach `max_concurrency`, this
        function will block and wait for a free slot.
        """
        await self._sem.acquire()
        return self._add_task(coroutine, name=name)

    async def join(self, raise_on_error: bool = False) -> list:
        """Wait for all tasks to finish."""
        try:
            return await asyncio.gather(
                *self.tasks, return_exceptions=(not raise_on_error)
            )
        except Exception:
            self.cancel()
            raise

    def cancel(self) -> None:
        """Cancels all tasks"""
        for task in self.tasks:
            task.cancel()


async def run_bounded(items, coroutine_fn: Callable, max_concurrency: int) -> List[Any]:
    """Runs `coroutine_fn(item)` for every item with bounded concurrency.

    Results are returned in input order. Exceptions are returned in place of
    the result instead of being raised, the caller decides what to do with them.
    """
    pool = ConcurrentTasks(max_concurrency=max_concurrency)
    tasks = []
    for item in items:
        tasks.append(
            await pool.put(functools.partial(coroutine_fn, item), name=f"{item}")
        )
    await pool.join()
    results = []
    for task in tasks:
        if task.cancelled():
            results.append(asyncio.CancelledError())
        elif task.exception() is not None:
            results.append(task.exception())
        else:
            results.append(task.result())
    return results


class RetryStrategy(Enum):
    CONSTANT = 0
    LINEAR_BACKOFF = 1
    EXPONENTIAL_BACKOFF = 2


class UnknownRetryStrategyError(Exception):
    pass


sleeps_for_retryable = CancellableSleeps()


def retryable(
    retries: int = 3,
    interval: float = 1.0,
    strategy: RetryStrategy = RetryStrategy.LINEAR_BACKOFF,
    skipped_exceptions: Optional[Any] = None,
) -> Callable:
    def wrapper(func):
        if skipped_exceptions is None:
            processed_skipped_exceptions = []
        elif not isinstance(skipped_exceptions, list):
            processed_skipped_exceptions = [skipped_exceptions]
        else:
            processed_skipped_exceptions = skipped_exceptions

        if inspect.iscoroutinefunction(func):
            return retryable_async_function(
                func, retries, interval, strategy, processed_skipped_exceptions
            )
        msg = f"Retryable decorator is not implemented for {func.__class__}."
        raise NotImplementedError(msg)

    return wrapper


def retryable_async_function(
    func: Callable,
    retries: int,
    interval: Union[float, int],
    strategy: RetryStrategy,
    skipped_exceptions: List[Any],
) -> Callable:
    @functools.wraps(func)
    async def wrapped(*args, **kwargs):
        retry = 1
        while retry <= retries:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if retry >= retries or isinstance(e, tuple(skipped_exceptions)):
                    raise e
                logger.debug(
                    f"Retrying ({retry} of {retries}) with interval: {interval} and strategy: {strategy.name}"
                )
                await sleeps_for_retryable.sleep(
                    time_to_sleep_between_retries(strategy, interval, retry)
                )
                retry += 1

    return wrapped


def time_to_sleep_between_retries(
    strategy: RetryStrategy, interval: Union[float, int], retry: int
) -> Union[float, int]:
    match strategy:
        case RetryStrategy.CONSTANT:
            return interval
        case RetryStrategy.LINEAR_BACKOFF:
            return interval * retry
        case RetryStrategy.EXPONENTIAL_BACKOFF:
            return interval**retry
        case _:
            raise UnknownRetryStrategyError()


class Counters:
    """
    A utility to provide code readability to managing a collection of counts
    """

    def __init__(self) -> None:
        self._storage = {}

    def increment(self, key: str, value: int = 1, namespace: Optional[str] = None) -> None:
        if namespace:
            key = f"{namespace}.{key}"
        self._storage[key] = self._storage.get(key, 0) + value

    def get(self, key: str) -> int:
        return self._storage.get(key, 0)

    def to_dict(self) -> Dict[str, int]:
        return deepcopy(self._storage)
