from __future__ import annotations

import logging
from typing import Protocol

from verifier.services.watch.status import JobStatus

logger = logging.getLogger(__name__)


class TerminalEventSink(Protocol):
    def on_terminal(self, job_id: str, status: JobStatus) -> None: ...


def notification_text(contract_name: str, status: JobStatus, job_id: str) -> tuple[str, str] | None:
    if status is JobStatus.SUCCESS:
        return (
            "Verification Successful",
            f"Contract '{contract_name}' has been successfully verified!\n\nJob ID: {job_id}",
        )
    if status is JobStatus.FAIL:
        return (
            "Verification Failed",
            f"Contract '{contract_name}' verification failed.\n\nJob ID: {job_id}",
        )
    if status is JobStatus.COMPILE_FAILED:
        return (
            "Compilation Failed",
            f"Contract '{contract_name}' compilation failed.\n\nJob ID: {job_id}",
        )
    return None


class ConsoleNotifier:
    """Prints a completion notice; stands in wherever a desktop notifier is not wired up."""

    def __init__(self, contract_names: dict[str, str] | None = None) -> None:
        self._contract_names = contract_names if contract_names is not None else {}

    def register(self, job_id: str, contract_name: str) -> None:
        self._contract_names[job_id] = contract_name

    def on_terminal(self, job_id: str, status: JobStatus) -> None:
        text = notification_text(self._contract_names.get(job_id, job_id), status, job_id)
        if text is None:
            return
        summary, body = text
        print(f"[verifier] {summary}: {body.splitlines()[0]}", flush=True)
        logger.info("notification sent job_id=%s status=%s", job_id, status.value)
