# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict
from ..types.common import LifecycleMode, StakeMode
from ..crypto.addresses import module_address

# Global Constants
DENOM = "pmt"
DECIMALS = 18
BECH32_PREFIX = "pm"

# In-protocol custody accounts on the token ledger
ESCROW_ADDRESS = module_address("escrow", prefix=BECH32_PREFIX)
STAKE_VAULT_ADDRESS = module_address("stake-vault", prefix=BECH32_PREFIX)


class MarketConfig:
    def __init__(self,
                 network_id: str,
                 min_provider_stake: int,
                 lifecycle_mode: LifecycleMode = LifecycleMode.SINGLE_PHASE,
                 stake_mode: StakeMode = StakeMode.TOKEN,
                 # Record the negative rating of a late submission even though
                 # the submission itself is rejected and rolled back
                 persist_late_penalty: bool = True,
                 # Upper bound on deadline - now at job creation (0 = unbounded)
                 max_job_duration_sec: int = 0,
                 bech32_prefix: str = BECH32_PREFIX,
                 denom: str = DENOM,
                 decimals: int = DECIMALS,
                 verifier_version: int = 1,
                 genesis_premine: int = 0,
                 faucet_priv_key: str = None):
        self.network_id = network_id
        self.min_provider_stake = min_provider_stake
        self.lifecycle_mode = LifecycleMode(lifecycle_mode)
        self.stake_mode = StakeMode(stake_mode)
        self.persist_late_penalty = persist_late_penalty
        self.max_job_duration_sec = max_job_duration_sec
        self.bech32_prefix = bech32_prefix
        self.denom = denom
        self.decimals = decimals
        self.verifier_version = verifier_version
        self.genesis_premine = genesis_premine
        self.faucet_priv_key = faucet_priv_key

    def copy(self, **overrides) -> "MarketConfig":
        values = dict(self.__dict__)
        values.update(overrides)
        return MarketConfig(**values)


NETWORKS: Dict[str, MarketConfig] = {
    "devnet": MarketConfig(
        network_id="devnet",
        min_provider_stake=500 * 10**DECIMALS,
        genesis_premine=1_000_000 * 10**DECIMALS,
        # Deterministic Faucet Key for Devnet
        faucet_priv_key="4f3edf982522b4e51b7e8b5f2f9c4d1d7a9e5f8c2b6d4e1a3c5b7d9e0f1a2b3c",
    ),
    "testnet": MarketConfig(
        network_id="testnet",
        min_provider_stake=1_000 * 10**DECIMALS,
        max_job_duration_sec=30 * 24 * 3600,
    ),
    "mainnet": MarketConfig(
        network_id="mainnet",
        min_provider_stake=10_000 * 10**DECIMALS,
        max_job_duration_sec=30 * 24 * 3600,
    ),
}

# Default to devnet for now
CURRENT_NETWORK = NETWORKS["devnet"]
