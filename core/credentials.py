from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Credentials:
    partner_id: int
    partner_key: str
    host: str
    shop_id: int
    access_token: str = ""

    def with_token(self, access_token: str) -> "Credentials":
        return replace(self, access_token=access_token)

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return (
            f"Credentials(partner_id={self.partner_id}, host={self.host!r}, "
            f"shop_id={self.shop_id}, has_token={bool(self.access_token)})"
        )
