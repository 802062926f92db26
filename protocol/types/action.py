from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from ..crypto.hash import sha256_hex, canonical_json
from .common import ActionType

# Note: caller identity is verified by the host before an Action reaches the engine


class Action(BaseModel):
    action_type: ActionType
    caller: str
    participant: Optional[str] = None   # Target; defaults to caller
    amount: int = 0                     # Smallest units of `asset`
    asset: Optional[str] = None         # Defaults to the pool's primary asset
    referrer: Optional[str] = None      # Buy only
    timestamp: int                      # Host clock, unix seconds
    payload: Dict[str, Any] = Field(default_factory=dict)  # Initialize / AdminUpdate

    @property
    def target(self) -> str:
        return self.participant if self.participant else self.caller

    def hash(self) -> str:
        return sha256_hex(canonical_json(self.model_dump(mode="json")))
