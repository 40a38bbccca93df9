from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union

from creatorpay.core.settings import S

Rate = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class Split:
    gross_cents: int
    commission_cents: int
    creator_net_cents: int

    def as_item(self) -> Dict[str, Any]:
        return {
            "gross_cents": self.gross_cents,
            "commission_cents": self.commission_cents,
            "creator_net_cents": self.creator_net_cents,
        }


def rate_from_bps(bps: int) -> Decimal:
    return Decimal(int(bps)) / Decimal(10000)


DEFAULT_RATE = rate_from_bps(S.platform_commission_bps)


def _as_rate(rate: Rate) -> Decimal:
    # str() keeps 0.2 as "0.2" instead of its binary expansion
    return rate if isinstance(rate, Decimal) else Decimal(str(rate))


def split(gross_cents: int, rate: Optional[Rate] = None) -> Split:
    """Split a gross charge into platform commission and creator net.

    Commission is rounded half-up on minor units; the creator net is derived
    from it, so ``commission + net == gross`` always holds and any rounding
    remainder stays with the platform.
    """
    gross = int(gross_cents)
    if gross < 0:
        raise ValueError("gross_cents must be non-negative")
    r = DEFAULT_RATE if rate is None else _as_rate(rate)
    if r < 0 or r > 1:
        raise ValueError("commission rate must be between 0 and 1")
    commission = int((Decimal(gross) * r).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return Split(gross_cents=gross, commission_cents=commission, creator_net_cents=gross - commission)


def split_for_account(gross_cents: int, account: Optional[Dict[str, Any]]) -> Split:
    bps = (account or {}).get("commission_bps")
    if bps is None:
        return split(gross_cents)
    return split(gross_cents, rate_from_bps(int(bps)))
