"""
Domain interfaces - Abstractions for repositories, oracles and calendar providers.
Following SOLID: Dependency Inversion Principle - depend on abstractions, not concrete implementations.
Interface Segregation Principle - specific interfaces for different concerns.
"""
from abc import ABC, abstractmethod
from datetime import time
from typing import List, Optional, Tuple

from gatekeeper.domain.models import (
    Booking,
    DecisionResult,
    Job,
    PolicyConfig,
    Slot,
    TranscriptMessage,
)


class IRecordStore(ABC):
    """Interface for job record persistence. Writes replace the whole record."""

    @abstractmethod
    async def read(self, job_id: str) -> Optional[Job]:
        """Load a job, or None if it does not exist."""
        pass

    @abstractmethod
    async def write(self, job_id: str, job: Job) -> None:
        """Persist the full job record."""
        pass


class IPolicyStore(ABC):
    """Interface for the owner's gatekeeping policy."""

    @abstractmethod
    async def load(self) -> PolicyConfig:
        """Load the policy, falling back to defaults."""
        pass

    @abstractmethod
    async def update(self, changes: dict) -> PolicyConfig:
        """Merge partial changes into the stored policy."""
        pass


class IDecisionOracle(ABC):
    """Decides whether a live meeting is warranted."""

    @abstractmethod
    async def evaluate(self, transcript_text: str, policy: PolicyConfig) -> DecisionResult:
        """
        Judge the cumulative user intent against the policy.

        Raises:
            OracleUnavailable: generation could not run
            ParseError: output did not match DecisionResult
        """
        pass


class IResponseOracle(ABC):
    """Writes the natural-language reply shown to the user."""

    @abstractmethod
    async def reply(
        self,
        transcript_tail: List[TranscriptMessage],
        missing: List[str],
        decision: DecisionResult,
    ) -> str:
        """Acknowledge what was supplied and ask at most one follow-up question."""
        pass


class IAvailabilityProvider(ABC):
    """Proposes free meeting slots."""

    @abstractmethod
    async def suggest(
        self,
        window_days: int,
        slot_duration_mins: int,
        day_window: Tuple[time, time],
        owner_only: bool = True,
    ) -> List[Slot]:
        """Return up to 10 free slots, earliest first, none in the past."""
        pass


class ISchedulingProvider(ABC):
    """Books meetings on the owner's calendar."""

    @abstractmethod
    async def book(self, slot: Slot, attendees: List[str], title: str, description: str) -> Booking:
        """
        Create the calendar event.

        Raises:
            ProviderError: the calendar rejected or failed the insert
        """
        pass
