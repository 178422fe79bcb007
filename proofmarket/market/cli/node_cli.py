import argparse
import os
import logging
import asyncio
import json
from uvicorn import Config, Server
from ...protocol.crypto.keys import generate_private_key, public_key_from_private
from ...protocol.crypto.addresses import address_from_pubkey
from ...protocol.config.params import NETWORKS, MarketConfig
from ...protocol.types.common import LifecycleMode, Role, StakeMode
from ..core.market import Marketplace
from ..core.events import ALL_EVENTS
from ..rpc.api import app as rpc_app
# rpc deps are globals in api.py, we need to set them.
from ..rpc import api

logger = logging.getLogger(__name__)


def _select_config(args) -> MarketConfig:
    config = NETWORKS[args.network]
    overrides = {}
    if getattr(args, "lifecycle_mode", None):
        overrides["lifecycle_mode"] = LifecycleMode(args.lifecycle_mode)
    if getattr(args, "stake_mode", None):
        overrides["stake_mode"] = StakeMode(args.stake_mode)
    return config.copy(**overrides) if overrides else config


def cmd_init(args):
    """Initialize node: create admin key, genesis, data dir."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)
    config = _select_config(args)

    key_path = os.path.join(data_dir, "admin_key.hex")
    if not os.path.exists(key_path):
        if config.faucet_priv_key:
            # Use deterministic key for Devnet
            priv = bytes.fromhex(config.faucet_priv_key)
            print("Using DETERMINISTIC Devnet admin/faucet key.")
        else:
            priv = generate_private_key()
        with open(key_path, "w") as f:
            f.write(priv.hex())
    else:
        print(f"Key already exists at {key_path}")
        with open(key_path, "r") as f:
            priv = bytes.fromhex(f.read().strip())

    pub = public_key_from_private(priv)
    addr = address_from_pubkey(pub, prefix=config.bech32_prefix)
    print(f"Admin address: {addr}")
    print(f"PubKey Hex: {pub.hex()}")

    genesis_path = os.path.join(data_dir, "genesis.json")
    if os.path.exists(genesis_path):
        print(f"Genesis already exists at {genesis_path}")
    else:
        genesis_data = {
            "network_id": config.network_id,
            "admin": addr,
            "roles": {Role.SLASHER.value: [addr]},
            "slash_recipient": args.slash_recipient,
            "alloc": {addr: config.genesis_premine},
        }
        if config.stake_mode == StakeMode.NATIVE:
            genesis_data["native_alloc"] = {addr: config.genesis_premine}
        with open(genesis_path, "w") as f:
            f.write(json.dumps(genesis_data, indent=2))
        print("Wrote genesis.json. SAVE THE ADMIN KEY TO SPEND THE PREMINE!")

    print(f"\nNode initialized in {data_dir}")


async def run_node_async(args):
    data_dir = args.datadir
    db_path = os.path.join(data_dir, "market.db")
    config = _select_config(args)

    print(f"Starting ProofMarket node ({config.network_id}, {config.lifecycle_mode.value})...")
    print(f"Data DB: {db_path}")
    print(f"RPC: {args.host}:{args.port}")

    market = Marketplace(db_path, config=config, persist_tokens=True)

    def log_event(event_type, **data):
        logger.info(f"event {event_type}: {data}")

    market.events.subscribe(ALL_EVENTS, log_event)

    # Inject into RPC module (global vars)
    api.market = market

    server = Server(Config(app=rpc_app, host=args.host, port=args.port, log_level="info"))
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass
    finally:
        market.close()


def cmd_run(args):
    """Wrapper to run async main."""
    try:
        asyncio.run(run_node_async(args))
    except KeyboardInterrupt:
        pass


def main():
    parser = argparse.ArgumentParser(description="ProofMarket Node CLI")
    parser.add_argument("--datadir", default="./.proofmarket", help="Data directory")
    parser.add_argument("--network", default="devnet", choices=sorted(NETWORKS), help="Network preset")
    parser.add_argument("--lifecycle-mode", choices=[m.value for m in LifecycleMode], help="Override lifecycle mode")
    parser.add_argument("--stake-mode", choices=[m.value for m in StakeMode], help="Override staking mode")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--slash-recipient", default=None, help="Address receiving slashed stake")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)


if __name__ == "__main__":
    main()
