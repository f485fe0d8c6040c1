"""Fungible token ledgers: the receipt token and per-bucket share tokens."""

from typing import Dict, Tuple

from .access import Authorizer, Role
from .errors import InsufficientBalance


class ReceiptToken:
    """
    Minimal fungible token.

    `transfer` and `transfer_from` report failure by returning False, the
    way a token contract does; callers turn that into TransferFailed.
    `mint` is gated by `minter_role`. `burn` destroys the caller's own
    balance and is open to any holder.
    """

    minter_role = Role.RECEIPT_TOKEN_MINTER

    def __init__(self, name: str, authorizer: Authorizer):
        self.name = name
        self.authorizer = authorizer
        self.total_supply = 0
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(sender) < amount:
            return False
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        allowed = self.allowance(owner, spender)
        if amount < 0 or allowed < amount or self.balance_of(owner) < amount:
            return False
        self.allowances[(owner, spender)] = allowed - amount
        self._move(owner, to, amount)
        return True

    def mint(self, sender: str, to: str, amount: int) -> None:
        self.authorizer.check(self.minter_role, sender)
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def burn(self, sender: str, amount: int) -> None:
        self._burn(sender, amount)

    def _burn(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalance(
                f"{self.name}: burn {amount} from {account}", details={"balance": balance}
            )
        self.balances[account] = balance - amount
        self.total_supply -= amount

    def _move(self, sender: str, to: str, amount: int) -> None:
        self.balances[sender] = self.balance_of(sender) - amount
        self.balances[to] = self.balance_of(to) + amount


class ShareToken(ReceiptToken):
    """Claim on one bucket's pooled principal. Minted and burned only by
    the locking controller (LOCKED_TOKEN_MANAGER)."""

    minter_role = Role.LOCKED_TOKEN_MANAGER

    def __init__(self, name: str, authorizer: Authorizer, duration: int):
        super().__init__(name, authorizer)
        self.duration = duration

    def burn_from(self, sender: str, account: str, amount: int) -> None:
        self.authorizer.check(self.minter_role, sender)
        self._burn(account, amount)
