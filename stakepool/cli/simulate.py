"""
stakepool Simulation CLI

Runs the engine against the in-memory staking service.

Usage:
    stakepool-sim run [--config FILE] [--epochs N] [--max-steps N]
    stakepool-sim fee-curve [--config FILE] [--points N]
"""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..bank import NativeBank
from ..config import bps_to_rate, load_config
from ..constants import BPS, ONE_UNIT, SCALE
from ..engine import StakePool
from ..exceptions import ConfigurationError, StakePoolException
from ..liquidity import FeeCurve
from ..logger import get_logger
from ..staking import InMemoryStakingService

logger = get_logger(__name__)

OWNER = "owner"
DEPOSITOR = "depositor"
REWARDER = "rewarder"


def format_units(amount: int) -> str:
    """Smallest units to whole assets with four decimals."""
    return f"{amount / ONE_UNIT:,.4f}"


def format_rate(rate: int) -> str:
    return f"{rate * BPS / SCALE:.2f} bps"


@click.group()
@click.version_option(version="0.1.0", prog_name="stakepool-sim")
def cli():
    """stakepool simulator."""
    pass


@cli.command()
@click.option("--config", "config_path", type=click.Path(), default=None,
              help="TOML file with a [stakepool] table")
@click.option("--epochs", type=int, default=None, help="Override simulation.epochs")
@click.option("--max-steps", type=int, default=None,
              help="Validators per crank call (default: config or unbounded)")
def run(config_path: Optional[str], epochs: Optional[int], max_steps: Optional[int]):
    """Run a scripted simulation and print per-epoch ledger state."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    sim = config.simulation
    epochs = sim.epochs if epochs is None else epochs
    max_steps = config.crank.max_steps if max_steps is None else (max_steps or None)

    bank = NativeBank()
    service = InMemoryStakingService(
        bank,
        activation_delay=sim.activation_delay,
        withdrawal_delay=sim.withdrawal_delay,
    )
    engine = StakePool.from_config(config, bank, service, owner=OWNER)

    bank.mint(DEPOSITOR, sim.deposit_per_epoch * epochs)
    bank.mint(REWARDER, sim.rewards_per_epoch * epochs)

    table = Table(title=f"stakepool simulation ({epochs} epochs)")
    for column in ("Epoch", "Staked", "Unstaking", "Reserved", "Pool", "Target",
                   "Native", "Rewards owed", "Equity", "Fee"):
        table.add_column(column, justify="right")

    try:
        for validator in sim.validators:
            engine.add_validator(validator.validator_id, validator.operator, OWNER)

        fee_rate = bps_to_rate(sim.protocol_fee_bps)
        for _ in range(epochs):
            if sim.deposit_per_epoch:
                engine.deposit(sim.deposit_per_epoch, DEPOSITOR, DEPOSITOR)

            linked = engine.registry.active_ids()
            if sim.rewards_per_epoch and linked:
                share = sim.rewards_per_epoch // len(linked)
                for validator_id in linked:
                    if share:
                        engine.send_validator_rewards(validator_id, share, fee_rate, REWARDER)

            service.advance_epoch()
            calls = 1
            while not engine.crank(max_steps):
                calls += 1
            logger.debug(f"Epoch {engine.epoch} cranked in {calls} call(s)")

            wanted = min(sim.instant_withdraw_per_epoch, engine.current_liquidity())
            if wanted and engine.preview_withdraw(wanted) <= engine.balance_of(DEPOSITOR):
                engine.withdraw(wanted, DEPOSITOR, DEPOSITOR, DEPOSITOR)

            ledger = engine.ledger
            table.add_row(
                str(engine.epoch),
                format_units(ledger.working.staked_amount),
                format_units(ledger.working.unstaking_amount),
                format_units(ledger.working.reserved_amount),
                format_units(engine.current_liquidity()),
                format_units(engine.target_liquidity()),
                format_units(ledger.native_amount),
                format_units(ledger.liabilities.rewards_payable),
                format_units(engine.total_equity()),
                format_rate(engine.current_fee_rate()),
            )
    except StakePoolException as e:
        raise click.ClickException(f"Simulation failed at epoch {engine.epoch}: {e}")

    Console().print(table)
    click.echo(click.style("Conservation held on every step.", fg="green"))


@cli.command("fee-curve")
@click.option("--config", "config_path", type=click.Path(), default=None,
              help="TOML file with a [stakepool] table")
@click.option("--points", type=int, default=11, help="Utilization samples")
def fee_curve(config_path: Optional[str], points: int):
    """Print the instant-withdrawal fee across utilization."""
    try:
        config = load_config(config_path)
        parameters = config.to_parameters()
        curve = FeeCurve.from_parameters(parameters)
        samples = curve.sample(points)
    except (ConfigurationError, ValueError) as e:
        raise click.ClickException(str(e))

    table = Table(title="Instant-withdrawal fee curve")
    table.add_column("Utilization", justify="right")
    table.add_column("Fee", justify="right")
    for utilization, fee in samples:
        marker = " (kink)" if utilization == curve.kink else ""
        table.add_row(f"{utilization * 100 / SCALE:.1f}%{marker}", format_rate(fee))
    Console().print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
