"""Trading signal model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

# EA id used when a mentor does not tag a signal or license with one
DEFAULT_EA_ID = "default"


class Direction(str, Enum):
    """Trade direction."""

    BUY = "BUY"
    SELL = "SELL"


class TradeSignal(BaseModel):
    """A mentor's trading directive as stored in the signal log."""

    model_config = ConfigDict(frozen=True)

    id: str
    mentor_id: str
    ea_id: str = DEFAULT_EA_ID
    direction: Direction
    symbol: str
    entry_price: float | None = None
    stop_loss: float
    take_profit: float
    size: float | None = None
    comment: str | None = None
    created_at: datetime

    @property
    def sequence(self) -> int:
        """Numeric form of the id, used for ordering."""
        return int(self.id)

    def targets_ea(self, ea_id: str) -> bool:
        """Check whether a license/student bound to ``ea_id`` should follow this signal."""
        if self.ea_id == DEFAULT_EA_ID or ea_id == DEFAULT_EA_ID:
            return True
        return self.ea_id == ea_id
