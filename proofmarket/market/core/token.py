# MIT License
# Copyright (c) 2025 Hashborn

"""
Payment token ledger boundary.

The marketplace only needs a standard balance ledger with approve /
transferFrom semantics. The core treats a False return and a raised fault
identically (see `safe_transfer` / `safe_transfer_from`).

InMemoryTokenLedger is the reference ledger used by the node and the tests.
Each transfer is atomic on its own: if the receiver hook raises, every balance
change made during the transfer (including nested ones) is undone.
"""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

TransferHook = Callable[[str, str, int], None]


class TokenLedger:
    """Interface of the external token ledger."""

    def balance_of(self, owner: str) -> int:
        raise NotImplementedError

    def allowance(self, owner: str, spender: str) -> int:
        raise NotImplementedError

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        raise NotImplementedError

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        raise NotImplementedError

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        raise NotImplementedError


class InMemoryTokenLedger(TokenLedger):
    def __init__(self, symbol: str = "PMT", require_allowance: bool = True,
                 balances: Dict[str, int] = None):
        self.symbol = symbol
        # Native-coin ledgers move value sent with the call, no approval step
        self.require_allowance = require_allowance
        self._balances: Dict[str, int] = dict(balances or {})
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()
        # Called after balances move, like a token receiver callback
        self.on_transfer: Optional[TransferHook] = None

    def mint(self, to: str, amount: int):
        with self._lock:
            self._balances[to] = self._balances.get(to, 0) + amount

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            return False
        with self._lock:
            self._allowances[(owner, spender)] = amount
        return True

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def snapshot(self) -> Tuple[Dict[str, int], Dict[Tuple[str, str], int]]:
        with self._lock:
            return dict(self._balances), dict(self._allowances)

    def restore(self, snapshot: Tuple[Dict[str, int], Dict[Tuple[str, str], int]]):
        """Puts balances and allowances back to a snapshot taken before a failed call."""
        with self._lock:
            self._balances = dict(snapshot[0])
            self._allowances = dict(snapshot[1])

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        with self._lock:
            return self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        with self._lock:
            if self.require_allowance and spender != owner:
                allowed = self.allowance(owner, spender)
                if allowed < amount:
                    logger.debug(f"transfer_from rejected: allowance {allowed} < {amount}")
                    return False
                snapshot = dict(self._allowances)
                self._allowances[(owner, spender)] = allowed - amount
                try:
                    moved = self._move(owner, to, amount)
                except Exception:
                    self._allowances = snapshot
                    raise
                if not moved:
                    self._allowances = snapshot
                return moved
            return self._move(owner, to, amount)

    def _move(self, sender: str, to: str, amount: int) -> bool:
        if amount < 0:
            return False
        if self._balances.get(sender, 0) < amount:
            logger.debug(f"transfer rejected: {sender} balance {self.balance_of(sender)} < {amount}")
            return False

        balances_before = dict(self._balances)
        allowances_before = dict(self._allowances)
        self._balances[sender] -= amount
        self._balances[to] = self._balances.get(to, 0) + amount

        if self.on_transfer:
            try:
                self.on_transfer(sender, to, amount)
            except Exception:
                self._balances = balances_before
                self._allowances = allowances_before
                raise
        return True


def safe_transfer(ledger: TokenLedger, sender: str, to: str, amount: int) -> Tuple[bool, str]:
    """Calls ledger.transfer; a False return and a raised fault both come back as (False, reason)."""
    try:
        if ledger.transfer(sender, to, amount):
            return True, ""
        return False, "transfer returned false"
    except Exception as e:
        logger.warning(f"transfer {sender} -> {to} ({amount}) raised: {e}")
        return False, str(e)


def safe_transfer_from(ledger: TokenLedger, spender: str, owner: str, to: str, amount: int) -> Tuple[bool, str]:
    """Calls ledger.transfer_from with the same failure folding as safe_transfer."""
    try:
        if ledger.transfer_from(spender, owner, to, amount):
            return True, ""
        return False, "transfer_from returned false"
    except Exception as e:
        logger.warning(f"transfer_from {owner} -> {to} ({amount}) raised: {e}")
        return False, str(e)


class PersistentTokenLedger(InMemoryTokenLedger):
    """
    InMemoryTokenLedger whose balances and allowances survive node restarts.

    Stored in the market database under `tok:<symbol>:bal:<addr>` and
    `tok:<symbol>:allow:<owner>:<spender>`. Outside a marketplace call every
    successful mutation is saved at once. While a call holds the ledger
    (`hold()` / `release()`), nothing is written here; the marketplace
    collects `state_items()` and writes them in the same batch as the call's
    state, so tokens and market state commit together.
    """

    def __init__(self, db, symbol: str = "PMT", require_allowance: bool = True):
        super().__init__(symbol=symbol, require_allowance=require_allowance)
        self.db = db
        self._prefix = f"tok:{symbol}:"
        self._depth = 0
        self._held = 0
        for key, value in db.get_state_by_prefix(self._prefix + "bal:").items():
            self._balances[key[len(self._prefix + "bal:"):]] = int(value)
        for key, value in db.get_state_by_prefix(self._prefix + "allow:").items():
            owner, spender = key[len(self._prefix + "allow:"):].split(":", 1)
            self._allowances[(owner, spender)] = int(value)
        logger.info(f"Loaded {len(self._balances)} {symbol} balances")

    def hold(self):
        with self._lock:
            self._held += 1

    def release(self):
        with self._lock:
            self._held -= 1

    def mint(self, to: str, amount: int):
        with self._lock:
            super().mint(to, amount)
            self._save()

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        with self._lock:
            ok = super().approve(owner, spender, amount)
            if ok:
                self._save()
            return ok

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return self._saving(super().transfer, sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        return self._saving(super().transfer_from, spender, owner, to, amount)

    def _saving(self, op, *args) -> bool:
        with self._lock:
            self._depth += 1
            try:
                ok = op(*args)
            finally:
                self._depth -= 1
            if ok and self._depth == 0:
                self._save()
            return ok

    def state_items(self) -> Dict[str, Optional[str]]:
        """Every balance and allowance as db items; stale allowance keys map to None."""
        with self._lock:
            items: Dict[str, Optional[str]] = {
                f"{self._prefix}bal:{addr}": str(bal) for addr, bal in self._balances.items()
            }
            for key in self.db.get_state_by_prefix(self._prefix + "allow:"):
                items[key] = None
            for (owner, spender), amount in self._allowances.items():
                items[f"{self._prefix}allow:{owner}:{spender}"] = str(amount)
            return items

    def _save(self):
        if self._held:
            return
        self.db.write_batch(self.state_items())
