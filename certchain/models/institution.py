from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Institution:
    name: str
    identity: str  # wallet address the ledger grants minting rights to
    is_minter: bool = False

    @staticmethod
    def new(*, name: str, identity: str) -> Institution:
        return Institution(name=name, identity=identity)
