"""
decayfarm: external collaborator interfaces

The controller never moves value by itself. It talks to three boundaries:

  - TokenAuthority: the capped reward token; mints to a recipient when
                    asked by its minter (the controller address)
  - AdminRegistry:  the factory; answers who the admin is right now
  - AssetBook:      balances held by the controller address (residuals,
                    tokens sent by mistake) and transfers out of them

All three are queried at call time; nothing is cached.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

Address = str


@runtime_checkable
class TokenAuthority(Protocol):
    """
    Reward token minting authority.

    Enforces its own supply cap independently of the controller's per-period
    budget check.
    """

    @property
    def token(self) -> Address: ...

    def mint(self, minter: Address, to: Address, amount: int) -> None: ...


@runtime_checkable
class AdminRegistry(Protocol):
    def current_admin(self) -> Address: ...


@runtime_checkable
class AssetBook(Protocol):
    def balance_of(self, token: Address, holder: Address) -> int: ...

    def transfer(self, token: Address, sender: Address, to: Address, amount: int) -> None: ...


__all__ = ["Address", "TokenAuthority", "AdminRegistry", "AssetBook"]
