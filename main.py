import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from config.config import SystemConfig, load_config, save_config
from exceptions import LedgerCorruptedError, VotingError
from ledger.voting_ledger import JsonLedgerStore, VotingLedger
from registry.voter_registry import VoterRegistry
from utils.utils import atomic_write_json, create_performance_report, create_tally_report, setup_logging
from voting_protocol import VoteTicket, VotingPoll
from zk.verification import create_verification_service
from zk.zk_proofs import SnarkjsProofOracle

logger = logging.getLogger(__name__)


def build_poll(config: SystemConfig) -> VotingPoll:
    """Wire registry, prover, verifier and persisted ledger from config"""
    registry = VoterRegistry.load(config.registry_path)
    ledger = VotingLedger.load(JsonLedgerStore(config.ledger_path))

    return VotingPoll(
        registry=registry,
        prover=SnarkjsProofOracle(config.prover),
        verifier=create_verification_service(config.verifier),
        ledger=ledger,
        config=config.poll,
        verification_timeout=config.verifier.verification_timeout,
        max_proof_attempts=config.prover.max_proof_attempts,
    )


def cmd_init_poll(config: SystemConfig, args) -> int:
    poll = build_poll(config)
    voting_id = poll.open()
    poll.registry.save_mapping(config.mapping_path)
    print(f"votingID: {voting_id}")
    return 0


def cmd_mapping(config: SystemConfig, args) -> int:
    registry = VoterRegistry.load(config.registry_path)
    output = Path(args.output) if args.output else config.mapping_path
    registry.save_mapping(output)
    print(f"Wrote mapping for {len(registry)} voters to {output}")
    return 0


async def _prove(config: SystemConfig, identity: str, vote: int, output: Path) -> int:
    poll = build_poll(config)
    poll.open()
    ticket = await poll.build_proof(identity, vote)
    atomic_write_json(output, ticket.to_dict())
    print(f"Ticket saved to {output}")
    print(f"Keep your ticket code to check your vote later: {ticket.randomness}")
    return 0


def cmd_proof(config: SystemConfig, args) -> int:
    return asyncio.run(_prove(config, args.identity, args.vote, Path(args.output)))


async def _vote(config: SystemConfig, ticket_path: Path) -> int:
    poll = build_poll(config)
    poll.open()
    try:
        ticket = VoteTicket.from_dict(json.loads(ticket_path.read_text()))
    except (OSError, KeyError, TypeError, ValueError) as e:
        logger.error(f"Cannot read ticket {ticket_path}: {e}")
        return 1

    try:
        receipt = await poll.submit(ticket)
    finally:
        await poll.verifier.close()

    print(json.dumps(receipt.to_dict(), indent=2, default=str))
    return 0


def cmd_vote(config: SystemConfig, args) -> int:
    return asyncio.run(_vote(config, Path(args.ticket)))


def cmd_results(config: SystemConfig, args) -> int:
    snapshot = VotingLedger.load(JsonLedgerStore(config.ledger_path)).snapshot()
    tally = {option: snapshot.tally.get(option, 0) for option in config.poll.vote_options}
    tally.update(snapshot.tally)
    print(create_tally_report(tally, snapshot.voting_id))
    print(f"State: {snapshot.state.value}")
    return 0


def cmd_close(config: SystemConfig, args) -> int:
    VotingLedger.load(JsonLedgerStore(config.ledger_path)).close()
    print("Voting closed")
    return 0


def cmd_reset(config: SystemConfig, args) -> int:
    VotingLedger(JsonLedgerStore(config.ledger_path)).reset()
    print(f"{config.ledger_path} has been reset")
    return 0


async def run_demo(config: SystemConfig) -> int:
    """Cast one vote per registered voter and print the tally"""
    poll = build_poll(config)
    poll.open()
    options = config.poll.vote_options
    ballots = [(voter, options[i % len(options)]) for i, voter in enumerate(poll.registry)]

    try:
        outcomes = await poll.cast_votes(ballots)
    finally:
        await poll.verifier.close()

    for outcome in outcomes:
        if not outcome.accepted:
            print(f"  {outcome.identity}: {type(outcome.error).__name__}: {outcome.error}")

    results = poll.results()
    print(create_tally_report(results['tally'], results['votingID']))
    print(create_performance_report(poll.monitor))
    return 0 if all(o.accepted for o in outcomes) else 1


def cmd_demo(config: SystemConfig, args) -> int:
    return asyncio.run(run_demo(config))


def cmd_save_config(config: SystemConfig, args) -> int:
    save_config(config, Path(args.config))
    print(f"Configuration written to {args.config}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Anonymous Merkle-membership voting')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Override log level (DEBUG, INFO, ...)')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init-poll', help='Build the voter tree and open the poll').set_defaults(func=cmd_init_poll)

    mapping = sub.add_parser('mapping', help='Write the identity -> index mapping')
    mapping.add_argument('--output', type=str, default=None)
    mapping.set_defaults(func=cmd_mapping)

    proof = sub.add_parser('proof', help='Generate a vote ticket')
    proof.add_argument('identity', type=str, help='Voter identity')
    proof.add_argument('vote', type=int, help='Vote option')
    proof.add_argument('--output', type=str, default='ticket.json')
    proof.set_defaults(func=cmd_proof)

    vote = sub.add_parser('vote', help='Submit a vote ticket')
    vote.add_argument('ticket', type=str, help='Ticket file from the proof command')
    vote.set_defaults(func=cmd_vote)

    sub.add_parser('results', help='Print the current tally').set_defaults(func=cmd_results)
    sub.add_parser('close', help='Stop accepting votes').set_defaults(func=cmd_close)
    sub.add_parser('reset', help='Clear the ledger').set_defaults(func=cmd_reset)
    sub.add_parser('demo', help='Cast a vote for every registered voter').set_defaults(func=cmd_demo)
    sub.add_parser('save-config', help='Write the effective configuration').set_defaults(func=cmd_save_config)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = load_config(Path(args.config))

    log_level = args.log_level or ('DEBUG' if config.enable_debug_mode else 'INFO')
    setup_logging(log_level, config.log_dir / "voting.log")

    try:
        sys.exit(args.func(config, args))
    except LedgerCorruptedError as e:
        logger.critical(f"Refusing to start: {e}")
        sys.exit(2)
    except VotingError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
