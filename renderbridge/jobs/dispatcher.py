"""Job dispatcher interface."""

from abc import ABC, abstractmethod


class JobDispatcher(ABC):
    """Abstract interface for scheduling job execution off the caller's path."""

    @abstractmethod
    async def submit(self, job_id: str) -> None:
        """Schedule one execution of the job. Must not wait for it to run."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loops)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...

    @property
    @abstractmethod
    def pending(self) -> int:
        """Number of scheduled jobs not yet picked up by a worker."""
        ...
