from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from .common import ActionType, SettlementKind

VAULT_PREFIX = "vault:"


def vault_address(asset: str) -> str:
    return f"{VAULT_PREFIX}{asset}"


class SettlementInstruction(BaseModel):
    """Write intent for the custody collaborator. The engine never moves funds itself."""
    kind: SettlementKind
    asset: str
    source: str
    destination: str
    amount: int


class ActionResult(BaseModel):
    action_hash: str
    action_type: ActionType
    participant: Optional[str] = None
    sequence: int = 0

    minted: int = 0              # Mining power credited to the participant
    fee_units: int = 0           # Mining power withheld as protocol fee (Buy)
    referral_bonus: int = 0      # Power or hash credited to the referrer
    compounded: int = 0          # Power created by Compound
    accrued: Dict[str, int] = Field(default_factory=dict)  # New earnings per asset (Claim)

    settlements: List[SettlementInstruction] = Field(default_factory=list)

    def total_out(self, asset: str) -> int:
        """Value leaving the vault for `asset`."""
        src = vault_address(asset)
        return sum(s.amount for s in self.settlements if s.asset == asset and s.source == src)

    def total_in(self, asset: str) -> int:
        """Value entering the vault for `asset`."""
        dst = vault_address(asset)
        return sum(s.amount for s in self.settlements if s.asset == asset and s.destination == dst)
