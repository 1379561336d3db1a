"""
LUBA CLI - Command Line Interface for the lowest-unique-bid auction engine

Main entry point for all CLI commands.
"""

import json
import logging
import click
from pathlib import Path

from luba import __version__
from luba.utils.logger import SUBSYSTEMS, setup_logging, get_logger

logger = get_logger("cli")


def _parse_log_levels(values):
    """Turn ("storage=WARNING", ...) into {"storage": logging.WARNING}."""
    levels = {}
    for item in values:
        subsystem, sep, name = item.partition("=")
        level = logging.getLevelName(name.strip().upper())
        if not sep or subsystem not in SUBSYSTEMS or not isinstance(level, int):
            raise click.BadParameter(
                f"expected SUBSYSTEM=LEVEL with SUBSYSTEM one of {', '.join(SUBSYSTEMS)}, got {item!r}",
                param_hint="--log-level",
            )
        levels[subsystem] = level
    return levels


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Config file (JSON or TOML)")
@click.option("--log-file", is_flag=True, help="Also write logs to luba.log in the configured log_dir")
@click.option("--log-level", "log_levels", multiple=True, metavar="SUBSYSTEM=LEVEL",
              help="Level for one subsystem, e.g. storage=WARNING (repeatable)")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, debug, config_path, log_file, log_levels):
    """Lowest Unique Bid Auction engine"""
    from luba.core.config import load_config

    level = logging.DEBUG if debug else logging.INFO
    subsystem_levels = _parse_log_levels(log_levels)
    setup_logging(level=level, subsystem_levels=subsystem_levels)

    ctx.ensure_object(dict)
    try:
        config = load_config(Path(config_path) if config_path else None)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    ctx.obj["config"] = config

    if log_file:
        config.ensure_dirs()
        setup_logging(
            level=level,
            log_dir=str(config.log_dir),
            log_to_file=True,
            subsystem_levels=subsystem_levels,
        )


# =============================================================================
# Escrow Commands
# =============================================================================


@cli.command("escrow-address")
@click.option("--collection", required=True, help="Collection address (0x...)")
@click.option("--token-id", required=True, type=int, help="Asset item id")
@click.option("--index", required=True, type=int, help="Auction generation index")
@click.option("--bidder", required=True, help="Bidder address (0x...)")
@click.option("--value", "bid_value", required=True, type=int, help="Bid value in bid units")
@click.option("--salt", default=None, help="32-byte salt (0x...); random if omitted")
@click.pass_context
def escrow_address(ctx, collection, token_id, index, bidder, bid_value, salt):
    """Compute the escrow address that commits a bid"""
    from luba.core.auction import derive_escrow_address
    from luba.crypto import bytes_to_hex, hex_to_bytes, random_salt
    from luba.utils.validation import validate_bid, validate_hex_string

    for value, name, size in ((collection, "collection", 20), (bidder, "bidder", 20)):
        valid, err = validate_hex_string(value, name, size)
        if not valid:
            raise click.BadParameter(err, param_hint=f"--{name}")
    if salt is not None:
        valid, err = validate_hex_string(salt, "salt", 32)
        if not valid:
            raise click.BadParameter(err, param_hint="--salt")

    salt_bytes = hex_to_bytes(salt) if salt else random_salt()
    valid, err = validate_bid(hex_to_bytes(bidder), bid_value, salt_bytes)
    if not valid:
        raise click.BadParameter(err)

    config = ctx.obj["config"]
    escrow = derive_escrow_address(
        config.engine_id,
        hex_to_bytes(collection),
        token_id,
        index,
        hex_to_bytes(bidder),
        bid_value,
        salt_bytes,
    )

    click.echo(f"Escrow:  {bytes_to_hex(escrow)}")
    click.echo(f"Salt:    {bytes_to_hex(salt_bytes)}")
    click.echo(f"Fund with at least {bid_value * config.value_unit} before bidding ends.")
    click.echo("If you win you pay the second lowest unique bid; fund above your bid to cover it.")
    if salt is None:
        click.echo("Keep the salt secret until you reveal.")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
@click.pass_context
def demo(ctx):
    """Run a walkthrough auction with duplicates and a late funder"""
    from luba.cli.scenario import Scenario, ScenarioBid, run_scenario

    click.echo("=" * 60)
    click.echo("  LOWEST UNIQUE BID AUCTION - DEMO")
    click.echo("=" * 60)
    click.echo()

    scenario = Scenario(
        name="demo",
        bids=[
            ScenarioBid(bidder="alice", value=1, collateral=3),
            ScenarioBid(bidder="bob", value=2),
            ScenarioBid(bidder="carol", value=3),
            ScenarioBid(bidder="dave", value=2),
            ScenarioBid(bidder="mallory", value=1, fund_late=True),
        ],
    )
    click.echo("Bids (revealed in this order):")
    for bid in scenario.bids:
        late = " (funded after the deadline)" if bid.fund_late else ""
        click.echo(f"  {bid.bidder:<8} value={bid.value} collateral={bid.funding}{late}")
    click.echo()

    outcome = run_scenario(scenario, ctx.obj["config"])
    _print_outcome(outcome)
    click.echo()
    click.echo("Demo complete!")


# =============================================================================
# Simulate Command
# =============================================================================


@cli.command("simulate")
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON")
@click.option("--save", is_flag=True, help="Persist the engine state to the configured data_dir")
@click.pass_context
def simulate(ctx, scenario_file, as_json, save):
    """Play a scenario file against a fresh engine"""
    from pydantic import ValidationError
    from luba.cli.scenario import Scenario, run_scenario
    from luba.core.errors import LUBAError
    from luba.core.storage import StorageManager

    text = Path(scenario_file).read_text()
    try:
        scenario = Scenario.model_validate_json(text)
    except ValidationError as e:
        raise click.ClickException(f"Invalid scenario {scenario_file}:\n{e}")

    config = ctx.obj["config"]
    storage = None
    if save:
        storage = StorageManager.from_config(config)
        if storage.stats()["auctions"]:
            storage.close()
            raise click.ClickException(f"{storage.db_path} already holds engine state")

    try:
        outcome = run_scenario(scenario, config, storage)
    except LUBAError as e:
        raise click.ClickException(f"Scenario {scenario.name} failed: {e}")
    finally:
        if storage is not None:
            storage.close()

    if save:
        logger.info(f"Engine state saved to {storage.db_path}")
    if as_json:
        click.echo(json.dumps(outcome.model_dump(), indent=2))
    else:
        _print_outcome(outcome)


def _print_outcome(outcome):
    click.echo("Reveals:")
    for line in outcome.reveals:
        status = "unique" if line.unique else ("duplicate" if line.collateralized else "disqualified")
        refund = f", refunded {line.refunded}" if line.refunded else ""
        click.echo(f"  {line.bidder:<8} {line.value:>4}  {status}{refund}")
    click.echo()
    click.echo(f"Lowest unique bid:        {outcome.lowest_unique_bid}")
    click.echo(f"Second lowest unique bid: {outcome.second_lowest_unique_bid}")
    if outcome.winner is None:
        click.echo("No unique bid - asset returned to the seller")
    else:
        click.echo(f"Winner: {outcome.winner} (bid {outcome.winning_bid}), paid {outcome.price_paid}")
        if outcome.shortfall:
            click.echo(f"Winning escrow was {outcome.shortfall} short of the settlement price")
    if outcome.withdrawn:
        click.echo(f"Withdrawn by losing bidders after the end: {outcome.withdrawn}")
    click.echo()
    click.echo("Final balances:")
    for name, balance in outcome.balances.items():
        click.echo(f"  {name:<8} {balance}")


if __name__ == "__main__":
    cli()
