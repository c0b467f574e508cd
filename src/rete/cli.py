"""
Command-line demonstration driver.

Subcommands:
- demo: run the blocks-world sample facts through the sample network
- run:  run facts from a JSON file through the sample network
"""

import argparse
import importlib.metadata
import json
import logging
import sys
from typing import Optional

from rete.blocks import RULE_NAME, SAMPLE_FACTS, build_blocks_network, describe_rule
from rete.config import ReteConfig
from rete.errors import ReteError
from rete.loader import load_facts
from rete.models import DuplicatePolicy, Fact, Token
from rete.network import Network, network_stats

logger = logging.getLogger(__name__)

PACKAGE_NAME = "rete-engine"


def _get_version() -> str:
    try:
        return importlib.metadata.version(PACKAGE_NAME)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rete",
        description="Incremental Rete pattern matching over (identifier, attribute, value) facts",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Logging level (default: $RETE_LOG_LEVEL or WARNING)",
    )
    parser.add_argument(
        "--duplicates",
        choices=[p.value for p in DuplicatePolicy],
        help="Duplicate fact/token handling (default: $RETE_DUPLICATE_POLICY or idempotent)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # rete demo
    demo_parser = subparsers.add_parser(
        "demo",
        help="Run the blocks-world sample",
        description="Insert the sample blocks-world facts into the sample network",
    )
    demo_parser.add_argument(
        "--reverse",
        action="store_true",
        help="Insert the sample facts in reverse order",
    )
    _add_output_flags(demo_parser)

    # rete run <file>
    run_parser = subparsers.add_parser(
        "run",
        help="Run facts from a JSON file",
        description="Insert facts read from a JSON file into the sample network",
    )
    run_parser.add_argument(
        "file",
        metavar="FILE",
        help='JSON file: {"facts": [["b1", "on", "b2"], ...]}',
    )
    _add_output_flags(run_parser)

    return parser


def _add_output_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Print the network state after all facts are inserted",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print memory statistics after all facts are inserted",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print firings (and stats) as JSON",
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help(sys.stderr)
        return 1

    try:
        config = ReteConfig.from_env().with_overrides(
            log_level=args.log_level,
            duplicate_policy=args.duplicates,
        )
        config.configure_logging()
        logger.debug(f"Driver config: {config}")

        if args.command == "demo":
            facts = list(reversed(SAMPLE_FACTS)) if args.reverse else list(SAMPLE_FACTS)
        else:
            facts = load_facts(args.file)

        return _run(facts, config, args)
    except (ReteError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _run(facts: list[Fact], config: ReteConfig, args: argparse.Namespace) -> int:
    firings: list[tuple[str, Token]] = []

    def record(rule: str, token: Token) -> None:
        firings.append((rule, token))
        if not args.json:
            print(f"Triggered action {rule} with the following facts: {token}")

    network = build_blocks_network(
        record,
        duplicate_policy=config.duplicate_policy,
        thread_safe=config.thread_safe,
    )

    if not args.json:
        print(f"Rule '{RULE_NAME}':")
        print(describe_rule())
        print(f"\nLoading {len(facts)} facts into working memory")
    network.insert_many(facts)

    if args.json:
        _print_json(firings, network, args.stats)
        return 0

    print(f"\n{len(firings)} firing(s)")
    if args.dump:
        _print_dump(network)
    if args.stats:
        _print_stats(network)
    return 0


# =============================================================================
# Output Formatting Functions
# =============================================================================


def _print_dump(network: Network) -> None:
    print("\n" + "=" * 60)
    print("NETWORK STATE")
    print("=" * 60)
    print(network.dump())


def _print_stats(network: Network) -> None:
    stats = network_stats(network)
    print("\n" + "=" * 60)
    print("NETWORK STATS")
    print("=" * 60)
    print(f"\nFacts inserted: {stats.insertions}")
    print(f"Facts stored: {stats.facts_stored}")
    print(f"Tokens stored: {stats.tokens_stored}")
    print(f"Mean memory size: {stats.mean_memory_size:.2f}")
    print(f"Largest memory: {stats.max_memory_size}")
    print("\nNodes:")
    for kind, count in sorted(stats.node_counts.items()):
        print(f"  {kind}: {count}")


def _print_json(firings: list[tuple[str, Token]], network: Network, with_stats: bool) -> None:
    payload = {
        "firings": [
            {"rule": rule, "facts": [fact.to_list() for fact in token]}
            for rule, token in firings
        ],
    }
    if with_stats:
        payload["stats"] = network_stats(network).to_dict()
    print(json.dumps(payload, indent=2))
