# MIT License
# Copyright (c) 2025 Hashborn

"""Shared accounts, clock and setup helpers for the marketplace tests."""

from proofmarket.market.core.market import Marketplace
from proofmarket.market.core.verifier import CommitmentVerifier, compute_output_hash
from proofmarket.protocol.config.params import MarketConfig, ESCROW_ADDRESS
from proofmarket.protocol.crypto.addresses import address_from_pubkey
from proofmarket.protocol.crypto.hash import sha256

START_TIME = 1_700_000_000
MIN_STAKE = 500


def make_address(label: str) -> str:
    return address_from_pubkey(f"test-account/{label}".encode())


ADMIN = make_address("admin")
SLASHER = make_address("slasher")
CLIENT = make_address("client")
PROVIDER = make_address("provider")
OTHER_PROVIDER = make_address("provider-2")
STRANGER = make_address("stranger")
TREASURY = make_address("treasury")

PROGRAM_ID = sha256(b"image-classifier-guest")
IMAGES = b"batch-of-images"
WEIGHTS = b"model-weights-v1"
OUTPUT_HASH = compute_output_hash(IMAGES, WEIGHTS)


class FakeClock:
    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


def make_config(**overrides) -> MarketConfig:
    values = dict(network_id="test", min_provider_stake=MIN_STAKE)
    values.update(overrides)
    return MarketConfig(**values)


def valid_receipt(program_id: bytes = PROGRAM_ID) -> bytes:
    return CommitmentVerifier().build_receipt(program_id, IMAGES, WEIGHTS)


def stake_provider(market: Marketplace, provider: str = PROVIDER, amount: int = MIN_STAKE):
    """Funds a provider on the staking asset and stakes `amount`."""
    market.stake_asset.mint(provider, amount)
    market.approve(provider, market.stake_vault_address, amount, native=market.stake_asset is not market.token)
    return market.stake_tokens(provider, amount)


def open_job(market: Marketplace, client: str = CLIENT, amount: int = 100, duration: int = 3600,
             program_id=PROGRAM_ID) -> int:
    """Funds a client, approves the escrow and creates a job."""
    market.token.mint(client, amount)
    market.approve(client, ESCROW_ADDRESS, amount)
    pid = program_id.hex() if isinstance(program_id, bytes) else program_id
    return market.create_job(client, "bafy-inputs", amount, market.clock() + duration, program_id=pid)


def accepted_job(market: Marketplace, amount: int = 100, duration: int = 3600) -> int:
    if not market.get_provider(PROVIDER).exists:
        stake_provider(market)
    job_id = open_job(market, amount=amount, duration=duration)
    market.accept_job(PROVIDER, job_id)
    return job_id
