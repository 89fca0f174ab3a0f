#!/usr/bin/env python3
"""Molpha Oracle Network.

Operator tooling for the oracle network core: quote subscription prices,
inspect the persisted signer registry and participation ledgers, and pay out
accrued signer rewards.

Configure with flags or env vars. CLI args take precedence.
"""

import argparse
import logging
import os
import sys
from types import SimpleNamespace

from .src.AccessPolicy import REGISTRY_OWNER, RoleAuthorizer
from .src.errors import MolphaError
from .src.NetworkUtility import LOCALNET, NetworkUtility
from .src.ParticipationLedger import ParticipationLedger
from .src.PayoutUtility import PayoutUtility
from .src.PayoutUtilityAppd import PayoutUtilityAppd
from .src.PayoutUtilityLocalnet import PayoutUtilityLocalnet
from .src.PricingEngine import SCALE, PricingEngine, PricingParams
from .src.SignerRegistry import SignerRegistry
from .src.StateStore import FilesystemStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_payout(network: str, payout_url: str | None) -> PayoutUtility:
    """Select the payout implementation for a network.

    :param network: Network name; localnet pays out directly through Web3
        from TREASURY_KEY or its funded development account.
    :param payout_url: Optional appd URL or socket path.
    """
    if network == LOCALNET:
        return PayoutUtilityLocalnet(NetworkUtility(network, os.environ.get("TREASURY_KEY")).w3)
    return PayoutUtilityAppd(url=payout_url or "")


def cmd_quote(args: argparse.Namespace) -> None:
    params = PricingParams(
        base_price_per_second=args.base_price,
        frequency_coefficient=args.frequency_coefficient,
        signer_coefficient=args.signers_coefficient,
        reward_percentage_bps=args.reward_bps,
    )
    engine = PricingEngine(params)
    price = engine.price_per_second(args.frequency, args.min_signatures)

    reward = engine.reward_per_update(
        SimpleNamespace(frequency=args.frequency, min_signatures=args.min_signatures)
    )
    print(f"price_per_second:  {price} ({price / SCALE:.6f})")
    print(f"price_for_span:    {PricingEngine.price_for_span(price, args.seconds)} ({args.seconds}s)")
    print(f"reward_per_update: {reward} ({reward / SCALE:.6f})")


def cmd_signers(args: argparse.Namespace) -> None:
    registry = SignerRegistry.load(FilesystemStore(args.state_dir))
    print(f"snapshot v{registry.snapshot().version}: {registry.count} signers")
    for index, address in registry.signers():
        print(f"{index:>4}  {address}")


def cmd_ledger(args: argparse.Namespace) -> None:
    store = FilesystemStore(args.state_dir)
    registry = SignerRegistry.load(store)
    ledger = ParticipationLedger.load(args.feed, registry, 0, store)
    print(f"{args.feed}: {len(ledger)} entries")
    if args.signer:
        account = ledger.account(args.signer)
        print(f"signer:    {account.signer_address} (index {registry.index_of(args.signer)})")
        print(f"cursor:    {account.last_processed_index}")
        print(f"pending:   {account.pending_amount} ({account.pending_amount // SCALE} claimable)")


def build_authorizer(registry_owners: str | None) -> RoleAuthorizer:
    """Role grants for claims made on a signer's behalf.

    :param registry_owners: Comma-separated REGISTRY_OWNER addresses.
    """
    owners = [owner.strip() for owner in (registry_owners or "").split(",") if owner.strip()]
    return RoleAuthorizer({REGISTRY_OWNER: owners})


def cmd_claim(args: argparse.Namespace) -> None:
    caller = args.caller or args.signer
    if caller.lower() != args.signer.lower():
        build_authorizer(args.registry_owners).require_role(caller, REGISTRY_OWNER)

    store = FilesystemStore(args.state_dir)
    registry = SignerRegistry.load(store)
    ledger = ParticipationLedger.load(args.feed, registry, 0, store)
    amount = ledger.claim(args.signer, build_payout(args.network, args.payout_url))
    print(f"claimed {amount} for {args.signer} on {args.feed}")


def main() -> None:
    """Main entry point for the Molpha CLI."""
    parser = argparse.ArgumentParser(
        description="Molpha Oracle Network: signer registry, pricing and rewards",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Price of an hourly feed signed by 3 signers, for one day
  python -m molpha.main quote --frequency 3600 --min-signatures 3 --seconds 86400

  # Inspect persisted state
  python -m molpha.main signers --state-dir ./state
  python -m molpha.main ledger --state-dir ./state --feed btc/usd --signer 0x...

  # Pay out a signer's rewards on localnet
  python -m molpha.main claim --state-dir ./state --feed btc/usd --signer 0x... \\
      --network sapphire-localnet

  # Claim on a signer's behalf as a registry owner
  python -m molpha.main claim --state-dir ./state --feed btc/usd --signer 0x... \\
      --caller 0x... --registry-owners 0x...

Environment variables (CLI args take precedence):
  STATE_DIR, NETWORK, RPC_URL, PAYOUT_URL, TREASURY_KEY, REGISTRY_OWNERS,
  BASE_PRICE_PER_SECOND, FREQUENCY_COEFFICIENT, SIGNERS_COEFFICIENT, REWARD_PERCENTAGE_BPS
""",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    defaults = PricingParams.from_env()
    quote = subparsers.add_parser("quote", help="Compute subscription price and signer reward")
    quote.add_argument("--frequency", type=int, required=True, help="Seconds between updates")
    quote.add_argument(
        "--min-signatures", dest="min_signatures", type=int, required=True,
        help="Signer threshold per update",
    )
    quote.add_argument(
        "--seconds", type=int, default=86_400,
        help="Subscription span to price (default: 86400)",
    )
    quote.add_argument(
        "--base-price", dest="base_price", type=int,
        default=defaults.base_price_per_second,
        help=f"Scaled base price per second (default: {defaults.base_price_per_second})",
    )
    quote.add_argument(
        "--frequency-coefficient", dest="frequency_coefficient", type=int,
        default=defaults.frequency_coefficient,
        help=f"Frequency exponent in bps (default: {defaults.frequency_coefficient})",
    )
    quote.add_argument(
        "--signers-coefficient", dest="signers_coefficient", type=int,
        default=defaults.signer_coefficient,
        help=f"Signer exponent in bps (default: {defaults.signer_coefficient})",
    )
    quote.add_argument(
        "--reward-bps", dest="reward_bps", type=int,
        default=defaults.reward_percentage_bps,
        help=f"Signer reward share in bps (default: {defaults.reward_percentage_bps})",
    )
    quote.set_defaults(handler=cmd_quote)

    state_dir_default = os.environ.get("STATE_DIR") or "./state"

    signers = subparsers.add_parser("signers", help="List registered signers")
    signers.add_argument(
        "--state-dir", dest="state_dir", default=state_dir_default,
        help="State directory (default: ./state)",
    )
    signers.set_defaults(handler=cmd_signers)

    ledger = subparsers.add_parser("ledger", help="Show a feed's participation ledger")
    ledger.add_argument("--state-dir", dest="state_dir", default=state_dir_default)
    ledger.add_argument("--feed", required=True, help="Feed id (e.g., btc/usd)")
    ledger.add_argument("--signer", help="Signer address to show cursor and pending reward for")
    ledger.set_defaults(handler=cmd_ledger)

    claim = subparsers.add_parser(
        "claim",
        help="Pay out a signer's pending rewards (operator tooling; needs the state dir and a funded payer)",
    )
    claim.add_argument("--state-dir", dest="state_dir", default=state_dir_default)
    claim.add_argument("--feed", required=True, help="Feed id (e.g., btc/usd)")
    claim.add_argument("--signer", required=True, help="Signer address")
    claim.add_argument(
        "--caller",
        help="Address claiming; must hold REGISTRY_OWNER unless it is the signer (default: the signer)",
    )
    claim.add_argument(
        "--registry-owners", dest="registry_owners",
        help="Comma-separated REGISTRY_OWNER addresses",
        default=os.environ.get("REGISTRY_OWNERS"),
    )
    claim.add_argument(
        "--network",
        help="Network to pay out on (sapphire, sapphire-testnet, sapphire-localnet)",
        default=os.environ.get("NETWORK") or "sapphire-localnet",
    )
    claim.add_argument(
        "--payout-url", dest="payout_url",
        help="appd URL or socket path (default: /run/rofl-appd.sock)",
        default=os.environ.get("PAYOUT_URL"),
    )
    claim.set_defaults(handler=cmd_claim)

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == "quote" and args.seconds < 0:
        parser.error("--seconds must not be negative")

    try:
        args.handler(args)
    except MolphaError as e:
        logger.error(f"{e.code}: {e}")
        sys.exit(2 if e.retryable else 1)
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
