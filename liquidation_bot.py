"""
Superfluid stream liquidation bot.

Per token: fetch critical account snapshots from the subgraph, probe every account
on-chain, greedily pick the outflows to delete, batch them and push each batch
through the submission gate. Runs once, or forever with `--loop`.
"""

import sys
import time
import logging
import argparse
import traceback
from decimal import Decimal
from typing import List, Optional

from web3 import Web3

from flow_types import ConfigurationError, OutcomeStatus, RunReport
from ledger import SuperfluidLedger
from liquidation_engine import SelectionPolicy, make_batches, order_actions, select_liquidations
from notifier import TelegramNotifier
from rpc_manager import SmartSyncRPCManager
from settings import (
    DEFAULT_BATCH_SIZE, DEFAULT_DEPOSIT_CONSUMED_PCT, DEFAULT_GAS_MULTIPLIER,
    DEFAULT_MAX_GAS_PRICE_MWEI, DEFAULT_NETWORK, MAX_PASSES, RUN_AGAIN_IN, BotConfig, load_config,
)
from subgraph_reader import SubgraphReader
from submission_gate import SubmissionGate

logger = logging.getLogger("LiquidationBot")


def run_token(token: str, config: BotConfig, reader: SubgraphReader, ledger, gate: SubmissionGate,
              notifier: Optional[TelegramNotifier] = None, as_of: Optional[int] = None) -> RunReport:
    """One pass over one token: Fetching -> Selecting -> Batching -> Submitting."""
    report = RunReport(token=token.lower())
    policy = SelectionPolicy(
        deposit_consumed_pct_threshold=config.deposit_consumed_pct_threshold,
        threshold_inclusive=config.threshold_inclusive,
        include_pooled_flows=config.include_pooled_flows,
    )

    snapshots = reader.fetch_critical_snapshots(as_of if as_of is not None else int(time.time()), token)
    if not snapshots:
        logger.info(f"✅ No accounts to liquidate found for token {token}")
        return report

    actions = []
    for snapshot in snapshots:
        report.probed += 1
        logger.info(f"❓ Probing {snapshot.account} token {snapshot.token} ({snapshot.token_symbol}) "
                    f"net fr {snapshot.total_net_flow_rate} cfa net fr {snapshot.direct_net_flow_rate}")
        try:
            selection = select_liquidations(
                snapshot,
                lambda s=snapshot: reader.list_outgoing_flows(s.token, s.account, config.include_pooled_flows),
                ledger,
                policy,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            report.failed_accounts += 1
            logger.error(f"⚠️ Skipping {snapshot.account}: {e}")
            continue

        if selection.is_critical:
            report.critical += 1
        actions.extend(selection.actions)

    report.actions = len(actions)
    if not actions:
        logger.info(f"📊 Token {token}: probed {report.probed}, critical {report.critical}, nothing to liquidate")
        return report

    batches = make_batches(order_actions(actions), config.batch_size)
    logger.info(f"📦 Token {token}: {len(actions)} flows in {len(batches)} batches of <= {config.batch_size}")

    for batch in batches:
        outcome = gate.submit(batch, config.gas_multiplier, config.max_gas_price, config.dry_run)
        report.outcomes.append(outcome)
        logger.info(f"🧾 Batch outcome: {outcome.to_log_dict()}")
        if notifier:
            notifier.batch_outcome(config.network, outcome)

    logger.info(
        f"📊 Token {token}: probed {report.probed} | critical {report.critical} | flows {report.actions} | "
        f"submitted {report.submitted} | skipped {report.count(OutcomeStatus.SKIPPED)} | "
        f"dry run {report.count(OutcomeStatus.DRY_RUN)} | failed {report.count(OutcomeStatus.FAILED)}"
    )
    return report


def resolve_tokens(config: BotConfig, reader: SubgraphReader) -> List[str]:
    if config.token:
        return [config.token.lower()]
    tokens = [token["id"] for token in reader.list_super_tokens(is_listed=True)]
    logger.info(f"🪙 No token filter, processing {len(tokens)} listed super tokens")
    return tokens


def run_liquidations(config: BotConfig, reader: SubgraphReader, ledger, gate: SubmissionGate,
                     notifier: Optional[TelegramNotifier] = None, sleep=time.sleep) -> List[RunReport]:
    """Processes every token sequentially.

    A token gets another pass while the previous one submitted at least one batch,
    up to `config.max_passes` passes.
    """
    reports = []
    for token in resolve_tokens(config, reader):
        for pass_number in range(1, config.max_passes + 1):
            logger.info(f"🔍 Token {token} pass {pass_number}/{config.max_passes}")
            report = run_token(token, config, reader, ledger, gate, notifier)
            reports.append(report)
            if report.submitted == 0 or pass_number == config.max_passes:
                break
            logger.info(f"💤 Run complete, next pass in {config.pass_interval}s")
            sleep(config.pass_interval)
    return reports


def build_bot(config: BotConfig):
    """Wires the collaborators for a validated config. Returns (reader, ledger, gate, notifier)."""
    config.validate()
    rpc = SmartSyncRPCManager(config.rpc_url, config.fallback_rpcs)
    ledger = SuperfluidLedger(rpc, config.private_key, config.batch_contract_address, config.gda_forwarder_address)
    reader = SubgraphReader(config.subgraph_url)
    gate = SubmissionGate(ledger, cooldown=config.submit_cooldown)
    notifier = TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id, config.explorer_url)
    if not notifier.enabled:
        logger.warning("⚠️ TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID not set, Telegram alerts disabled")
    return reader, ledger, gate, notifier


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Superfluid stream liquidation bot")
    parser.add_argument("-n", "--network", default=DEFAULT_NETWORK, help="Network name, e.g. base-mainnet")
    parser.add_argument("-b", "--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Flows per transaction")
    parser.add_argument("-g", "--gas-multiplier", type=Decimal, default=DEFAULT_GAS_MULTIPLIER,
                        help="Safety multiplier applied to the gas estimate")
    parser.add_argument("-m", "--max-gas-price", type=int, default=DEFAULT_MAX_GAS_PRICE_MWEI,
                        help="Max gas price in mwei; batches are skipped above it")
    parser.add_argument("-t", "--token", default=None, help="Only liquidate this super token")
    parser.add_argument("-d", "--deposit-consumed-pct", type=int, default=DEFAULT_DEPOSIT_CONSUMED_PCT,
                        help="Min percentage of deposit consumed before liquidating")
    parser.add_argument("--threshold-inclusive", action="store_true",
                        help="Also skip accounts exactly at the deposit threshold")
    parser.add_argument("--no-pooled", action="store_true", help="Only liquidate direct (CFA) streams")
    parser.add_argument("--max-passes", type=int, default=MAX_PASSES, help="Max passes per token per run")
    parser.add_argument("--dry-run", action="store_true", help="Print transactions instead of sending them")
    parser.add_argument("-l", "--loop", action="store_true", help="Run forever instead of once")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format='%(asctime)s | %(levelname)s | %(message)s')

    try:
        config = load_config(
            args.network,
            token=args.token,
            batch_size=args.batch_size,
            gas_multiplier=args.gas_multiplier,
            max_gas_price=Web3.to_wei(args.max_gas_price, "mwei"),
            deposit_consumed_pct_threshold=args.deposit_consumed_pct,
            threshold_inclusive=args.threshold_inclusive,
            include_pooled_flows=not args.no_pooled,
            max_passes=args.max_passes,
            dry_run=args.dry_run,
        )
        reader, ledger, gate, notifier = build_bot(config)
    except ConfigurationError as e:
        logger.error(f"❌ Critical Error: {e}")
        return 1

    if config.dry_run:
        logger.info("🧪 Dry run: transactions will be printed, not sent")

    if not args.loop:
        logger.info("🚀 Run liquidations...")
        try:
            run_liquidations(config, reader, ledger, gate, notifier)
        except ConfigurationError as e:
            logger.error(f"❌ Critical Error: {e}")
            return 1
        except Exception as e:
            logger.error(f"💥 Run failed: {e}")
            traceback.print_exc()
            return 2
        return 0

    while True:
        logger.info("🚀 Running")
        try:
            run_liquidations(config, reader, ledger, gate, notifier)
        except ConfigurationError as e:
            logger.error(f"❌ Critical Error: {e}")
            return 1
        except Exception as e:
            logger.error(f"💥 Run failed: {e}")
            traceback.print_exc()
        logger.info(f"💤 Run again in {RUN_AGAIN_IN}s")
        time.sleep(RUN_AGAIN_IN)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("🛑 Liquidation Bot Stopped.")
