"""
Owner policy persistence.

The policy is a single JSON document; missing or unreadable files fall back
to the defaults declared on PolicyConfig.
"""
import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from gatekeeper.domain.interfaces import IPolicyStore
from gatekeeper.domain.models import PolicyConfig
from gatekeeper.errors import InvalidInput, RecordStoreError

logger = logging.getLogger(__name__)


class FilePolicyStore(IPolicyStore):
    """Stores the policy at ``{data_dir}/owner_config.json``."""

    def __init__(self, data_dir: str = "data"):
        self.path = Path(data_dir) / "owner_config.json"
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def load(self) -> PolicyConfig:
        if not self.path.exists():
            return PolicyConfig()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return PolicyConfig.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Policy file unreadable, using defaults: {e}")
            return PolicyConfig()

    async def update(self, changes: dict) -> PolicyConfig:
        current = await self.load()
        try:
            policy = current.merged(changes)
        except ValidationError as e:
            raise InvalidInput(f"Invalid policy configuration: {e.errors()[0]['msg']}") from e

        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(policy.model_dump(by_alias=True), f, indent=2)
        except OSError as e:
            raise RecordStoreError(f"Could not save policy: {e}") from e

        logger.info("Policy configuration updated")
        return policy


class InMemoryPolicyStore(IPolicyStore):
    """Policy held in memory, for tests and throwaway runs."""

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self._policy = policy or PolicyConfig()

    async def load(self) -> PolicyConfig:
        return self._policy.model_copy(deep=True)

    async def update(self, changes: dict) -> PolicyConfig:
        try:
            self._policy = self._policy.merged(changes)
        except ValidationError as e:
            raise InvalidInput(f"Invalid policy configuration: {e.errors()[0]['msg']}") from e
        return self._policy.model_copy(deep=True)
