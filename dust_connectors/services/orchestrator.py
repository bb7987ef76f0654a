#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
In-process workflow orchestrator.

Workflows are coroutines owning a `WorkflowRun`: they call activities through
`WorkflowRun.execute_activity`, which retries failures with backoff and
cancels an activity that stops sending heartbeats. Workflows are keyed by id,
at most one run per id is alive at any time.

Progress checkpoints are persisted in the workflows index, unfinished runs can
be resumed by a restarted worker.
"""
import asyncio
import contextvars
import time
from dataclasses import dataclass

from dust_connectors.exceptions import (
    ConnectorNotFoundError,
    InvalidRemoteObjectError,
    PartialResyncNotSupportedError,
    PermanentRemoteError,
)
from dust_connectors.logger import logger
from dust_connectors.protocol.workflows import WorkflowStatus
from dust_connectors.utils import RetryStrategy, time_to_sleep_between_retries

DEFAULT_HEARTBEAT_TIMEOUT = 300
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_INTERVAL = 2

NON_RETRYABLE_ERRORS = (
    PermanentRemoteError,
    InvalidRemoteObjectError,
    ConnectorNotFoundError,
    PartialResyncNotSupportedError,
)

_current_activity = contextvars.ContextVar("current_activity", default=None)


def heartbeat(details=None):
    """Reports liveness of the running activity. No-op outside of activities."""
    activity = _current_activity.get()
    if activity is not None:
        activity.heartbeat(details)


class ActivityTimeoutError(Exception):
    pass


@dataclass
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    interval: float = DEFAULT_RETRY_INTERVAL
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    non_retryable: tuple = NON_RETRYABLE_ERRORS

    def should_retry(self, exception, attempt):
        if isinstance(exception, self.non_retryable):
            return False
        return attempt < self.max_attempts


class _ActivityRun:
    def __init__(self, name):
        self.name = name
        self.last_heartbeat = time.monotonic()
        self.details = None

    def heartbeat(self, details=None):
        self.last_heartbeat = time.monotonic()
        if details is not None:
            self.details = details

    def idle_for(self):
        return time.monotonic() - self.last_heartbeat


class WorkflowRun:
    """Handle of a running workflow, also passed to the workflow coroutine."""

    def __init__(
        self,
        orchestrator,
        workflow_id,
        workflow_type,
        connector_id=None,
        resumed_state=None,
    ):
        self.orchestrator = orchestrator
        self.workflow_id = workflow_id
        self.workflow_type = workflow_type
        self.connector_id = connector_id
        self.resumed_state = resumed_state
        self.status = WorkflowStatus.RUNNING
        self.task = None
        self.error = None
        self._pending_signals = 0
        self._signaled = asyncio.Event()
        self._checkpointed = False

    def signal(self):
        self._pending_signals += 1
        self._signaled.set()

    @property
    def pending_signals(self):
        return self._pending_signals

    def consume_signals(self):
        """Acknowledges every signal received so far, returns how many there were."""
        count = self._pending_signals
        self._pending_signals = 0
        self._signaled.clear()
        return count

    async def wait_for_signal(self, timeout=None):
        try:
            await asyncio.wait_for(self._signaled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def sleep(self, delay):
        await asyncio.sleep(delay)

    async def execute_activity(self, activity_fn, *args, retry_policy=None, **kwargs):
        return await self.orchestrator.execute_activity(
            activity_fn, *args, retry_policy=retry_policy, **kwargs
        )

    async def checkpoint(self, state):
        self._checkpointed = True
        await self.orchestrator.save_checkpoint(self, state)

    def done(self):
        return self.task is not None and self.task.done()

    async def join(self):
        """Waits for the run to finish and returns its result, None if it failed."""
        return await asyncio.shield(self.task)


class WorkflowOrchestrator:
    """Runs workflows and their activities.

    Args:
        config (dict): full configuration, reads the `service` section
        workflow_index (WorkflowIndex): where checkpoints go, None disables them
    """

    def __init__(self, config=None, workflow_index=None):
        service_config = (config or {}).get("service", {})
        self.heartbeat_timeout = service_config.get(
            "heartbeat_timeout", DEFAULT_HEARTBEAT_TIMEOUT
        )
        self.retry_policy = RetryPolicy(
            max_attempts=service_config.get(
                "activity_max_attempts", DEFAULT_MAX_ATTEMPTS
            ),
            interval=service_config.get(
                "activity_retry_interval", DEFAULT_RETRY_INTERVAL
            ),
        )
        self.workflow_index = workflow_index
        self._workflows = {}

    def get(self, workflow_id):
        return self._workflows.get(workflow_id)

    def is_running(self, workflow_id):
        run = self._workflows.get(workflow_id)
        return run is not None and not run.done()

    @property
    def running_workflows(self):
        return [
            workflow_id
            for workflow_id, run in self._workflows.items()
            if not run.done()
        ]

    def _spawn(
        self,
        workflow_id,
        workflow_fn,
        args,
        workflow_type=None,
        connector_id=None,
        resumed_state=None,
    ):
        run = WorkflowRun(
            self,
            workflow_id,
            workflow_type or workflow_fn.__name__,
            connector_id=connector_id,
            resumed_state=resumed_state,
        )
        run.task = asyncio.create_task(
            self._run_workflow(run, workflow_fn, args), name=workflow_id
        )
        self._workflows[workflow_id] = run
        return run

    async def _run_workflow(self, run, workflow_fn, args):
        logger.info(f"Starting workflow {run.workflow_id}")
        try:
            result = await workflow_fn(run, *args)
        except asyncio.CancelledError:
            logger.info(f"Workflow {run.workflow_id} cancelled")
            raise
        except Exception as e:
            run.status = WorkflowStatus.FAILED
            logger.exception(f"Workflow {run.workflow_id} failed: {e}")
            run.error = e
            await self._set_status(run)
            return None
        run.status = WorkflowStatus.COMPLETED
        logger.info(f"Workflow {run.workflow_id} completed")
        await self._set_status(run)
        return result

    async def _set_status(self, run):
        if self.workflow_index is None or not run._checkpointed:
            return
        try:
            await self.workflow_index.set_status(run.workflow_id, run.status)
        except Exception as e:
            logger.error(f"Could not save status of workflow {run.workflow_id}: {e}")

    async def start(self, workflow_id, workflow_fn, *args, **options):
        """Starts a workflow, terminating the run with the same id if there is one."""
        await self.terminate(workflow_id)
        return self._spawn(workflow_id, workflow_fn, args, **options)

    async def signal_with_start(self, workflow_id, workflow_fn, *args, **options):
        """Signals the running workflow with this id, or starts it.

        A freshly started run gets the signal too, so there is always at least
        one pending signal to process.
        """
        run = self._workflows.get(workflow_id)
        if run is None or run.done():
            run = self._spawn(workflow_id, workflow_fn, args, **options)
        run.signal()
        return run

    async def start_cron(self, workflow_id, workflow_fn, interval, *args, **options):
        """Runs `workflow_fn` every `interval` seconds until terminated.

        A failing iteration is logged, the schedule goes on.
        """

        async def _cron(run, *cron_args):
            while True:
                try:
                    await workflow_fn(run, *cron_args)
                except Exception as e:
                    logger.exception(f"Cron workflow {workflow_id} failed: {e}")
                await run.sleep(interval)

        options.setdefault("workflow_type", workflow_fn.__name__)
        return await self.start(workflow_id, _cron, *args, **options)

    async def _cancel(self, run):
        if run.done():
            return
        run.task.cancel()
        try:
            await run.task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Workflow {run.workflow_id} raised while cancelled: {e}")

    async def terminate(self, workflow_id):
        """Stops a workflow for good. Returns False if it was not running."""
        run = self._workflows.pop(workflow_id, None)
        if run is None or run.done():
            return False
        logger.info(f"Terminating workflow {workflow_id}")
        await self._cancel(run)
        run.status = WorkflowStatus.TERMINATED
        await self._set_status(run)
        return True

    async def join(self, workflow_id):
        run = self._workflows.get(workflow_id)
        if run is None:
            return None
        return await run.join()

    async def stop(self):
        """Cancels every run, their checkpoints stay resumable."""
        runs = list(self._workflows.values())
        self._workflows = {}
        for run in runs:
            await self._cancel(run)

    async def save_checkpoint(self, run, state):
        if self.workflow_index is None:
            return
        await self.workflow_index.save(
            run.workflow_id, run.workflow_type, run.connector_id, state
        )

    async def resume(self, workflow_type, workflow_fn, *args):
        """Restarts the runs of `workflow_type` left unfinished by a previous worker.

        The workflow is called with `args` followed by the connector id, the
        saved state is available as `run.resumed_state`.

        Returns:
            list: the ids of the resumed workflows
        """
        if self.workflow_index is None:
            return []
        resumed = []
        async for checkpoint in self.workflow_index.running(workflow_type):
            if self.is_running(checkpoint.workflow_id):
                continue
            checkpoint.log_info("Resuming workflow from its last checkpoint")
            run = self._spawn(
                checkpoint.workflow_id,
                workflow_fn,
                args + (checkpoint.connector_id,),
                workflow_type=workflow_type,
                connector_id=checkpoint.connector_id,
                resumed_state=checkpoint.state,
            )
            run._checkpointed = True
            resumed.append(checkpoint.workflow_id)
        return resumed

    async def execute_activity(
        self, activity_fn, *args, retry_policy=None, heartbeat_timeout=None, **kwargs
    ):
        """Runs an activity until it succeeds or the retry policy gives up.

        Raises the last error of the activity once retries are exhausted, or
        right away for errors listed as non retryable.
        """
        retry_policy = retry_policy or self.retry_policy
        heartbeat_timeout = heartbeat_timeout or self.heartbeat_timeout
        name = getattr(activity_fn, "__name__", repr(activity_fn))
        attempt = 1
        while True:
            try:
                return await self._run_activity(
                    _ActivityRun(name), activity_fn, args, kwargs, heartbeat_timeout
                )
            except Exception as e:
                if not retry_policy.should_retry(e, attempt):
                    raise
                logger.warning(
                    f"Activity {name} failed (attempt {attempt} of {retry_policy.max_attempts}): {e!r}"
                )
                await asyncio.sleep(
                    time_to_sleep_between_retries(
                        retry_policy.strategy, retry_policy.interval, attempt
                    )
                )
                attempt += 1

    async def _run_activity(self, activity, activity_fn, args, kwargs, timeout):
        async def _activity():
            _current_activity.set(activity)
            return await activity_fn(*args, **kwargs)

        task = asyncio.create_task(_activity(), name=activity.name)
        try:
            while True:
                remaining = max(timeout - activity.idle_for(), 0)
                done, _ = await asyncio.wait({task}, timeout=remaining)
                if task in done:
                    return task.result()
                if activity.idle_for() >= timeout:
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
                    msg = f"Activity {activity.name} did not send a heartbeat for {timeout}s"
                    raise ActivityTimeoutError(msg)
        except asyncio.CancelledError:
            task.cancel()
            raise
