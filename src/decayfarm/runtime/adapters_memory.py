from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from decayfarm.runtime.errors import AuthorizationError
from decayfarm.runtime.ports import Address


@dataclass(slots=True)
class Transfer:
    token: Address
    sender: Address
    to: Address
    amount: int


class InMemoryAssetBook:
    """
    Minimal in-process token balances used for unit tests and dev boots.

    - No allowances, no events
    - Minting is done by crediting (see CappedRewardToken)
    """

    def __init__(self) -> None:
        self._balances: Dict[Address, Dict[Address, int]] = {}
        self.transfers: List[Transfer] = []

    def balance_of(self, token: Address, holder: Address) -> int:
        return int(self._balances.get(token, {}).get(holder, 0))

    def credit(self, token: Address, holder: Address, amount: int) -> None:
        a = int(amount)
        if a < 0:
            raise ValueError("credit amount must be non-negative")
        by_token = self._balances.setdefault(token, {})
        by_token[holder] = int(by_token.get(holder, 0)) + a

    def transfer(self, token: Address, sender: Address, to: Address, amount: int) -> None:
        a = int(amount)
        if a < 0:
            raise ValueError("transfer amount must be non-negative")
        bal = self.balance_of(token, sender)
        if a > bal:
            raise ValueError(f"insufficient balance: {sender} has {bal} of {token}, needs {a}")
        by_token = self._balances.setdefault(token, {})
        by_token[sender] = bal - a
        by_token[to] = int(by_token.get(to, 0)) + a
        self.transfers.append(Transfer(token=token, sender=sender, to=to, amount=a))


class CappedRewardToken:
    """Reward token with a hard supply cap and a single minter."""

    def __init__(self, *, token: Address, book: InMemoryAssetBook, cap: int, minter: Address) -> None:
        if int(cap) <= 0:
            raise ValueError("cap must be positive")
        if not str(minter or "").strip():
            raise ValueError("minter must be non-empty")
        self._token = str(token)
        self._book = book
        self.cap = int(cap)
        self.minter = str(minter)
        self.minted = 0

    @property
    def token(self) -> Address:
        return self._token

    def mint(self, minter: Address, to: Address, amount: int) -> None:
        if str(minter) != self.minter:
            raise AuthorizationError("forbidden", "minter_required", {"caller": minter, "token": self._token})
        a = int(amount)
        if a <= 0:
            raise ValueError("mint amount must be positive")
        if self.minted + a > self.cap:
            raise ValueError(f"supply cap exceeded: minted={self.minted} amount={a} cap={self.cap}")
        self.minted += a
        self._book.credit(self._token, to, a)


@dataclass
class StaticAdminRegistry:
    """Factory stand-in that reports a single, changeable admin."""

    admin: Address
    history: List[Address] = field(default_factory=list)

    def current_admin(self) -> Address:
        return self.admin

    def set_admin(self, admin: Address) -> None:
        self.history.append(self.admin)
        self.admin = str(admin)
