"""CLI 入口模块 - Pool Sniper 命令行接口。"""

import asyncio
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click

from pool_sniper import __version__
from pool_sniper.bot import SniperBot
from pool_sniper.config import RunMode, Settings, get_settings
from pool_sniper.data.cache import MarketCache, PoolCache
from pool_sniper.eligibility.pipeline import FilterPipeline
from pool_sniper.events import EventBus, NewCandidate, WalletBalanceChanged
from pool_sniper.exec.paper import PaperSigner, PaperSwapBackend
from pool_sniper.journal.store import JournalStore
from pool_sniper.positions.controller import PositionController
from pool_sniper.strategy.ladder import build_exit_ladder, stop_loss_threshold
from pool_sniper.types import Candidate, MarketInfo, PoolState, TokenAmount
from pool_sniper.utils.logging import get_logger, setup_logging


def _decimal(ctx: click.Context, param: click.Parameter, value: str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise click.BadParameter(f"not a number: {value}") from exc


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Pool Sniper - 新流动性池狙击与分档止盈系统。"""
    if version:
        click.echo(f"pool-sniper version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Pool Sniper - Status")
    click.echo("=" * 50)
    click.echo()

    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper Trading" if settings.is_paper_mode else "Live Trading"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo()

    click.echo("[Entry]")
    click.echo(f"   Quote: {settings.quote_amount} {settings.quote_symbol}")
    click.echo(f"   One token at a time: {'Yes' if settings.one_token_at_a_time else 'No'}")
    click.echo(f"   Allow list: {settings.allow_list_path if settings.use_allow_list else 'disabled'}")
    click.echo(f"   Buy retries: {settings.max_buy_retries}, slippage {settings.buy_slippage}%")
    click.echo(
        f"   Filters: {settings.consecutive_filter_matches} consecutive passes, "
        f"every {settings.filter_check_interval_ms} ms for {settings.filter_check_duration_ms} ms"
    )
    click.echo()

    click.echo("[Exit]")
    click.echo(f"   Auto sell: {'Yes' if settings.auto_sell else 'No'}")
    click.echo(f"   Sell retries: {settings.max_sell_retries}, slippage {settings.sell_slippage}%")
    click.echo(f"   Stop loss: {settings.stop_loss_pct}%")
    for step in settings.take_profit:
        click.echo(f"   Take profit: +{step.profit_pct}% -> sell {step.sell_pct}%")
    click.echo(
        f"   Price check: every {settings.price_check_interval_ms} ms "
        f"for {settings.price_check_duration_ms} ms"
    )
    click.echo(f"   Quote timeout: {settings.quote_timeout_ms} ms")
    click.echo()

    click.echo("[Execution]")
    click.echo(f"   Executor: {settings.transaction_executor.value}")
    click.echo(f"   Priority fee instructions: {'Yes' if settings.uses_priority_fee_instructions else 'No'}")
    click.echo()

    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo()

    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            click.echo("[ERROR] Live mode configuration incomplete, missing:")
            for key in missing:
                click.echo(f"   - {key}")
        else:
            click.echo("[OK] Live mode configuration complete")
    else:
        click.echo("[INFO] Paper mode does not require wallet configuration")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("pool_sniper.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Environment settings"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    if Path(".env").exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


@cli.command()
@click.option("--entry-quote", callback=_decimal, default=None, help="买入花费（默认 QUOTE_AMOUNT）")
@click.option("--entry-base", callback=_decimal, required=True, help="买入得到的代币数量")
@click.option("--base-decimals", type=int, default=6, show_default=True, help="代币精度")
def ladder(entry_quote: Decimal | None, entry_base: Decimal, base_decimals: int) -> None:
    """打印止盈阶梯和止损价位。"""
    settings = get_settings()
    quote = TokenAmount.from_decimal(entry_quote or settings.quote_amount, settings.quote_decimals)
    base = TokenAmount.from_decimal(entry_base, base_decimals)
    points = build_exit_ladder(quote, base, settings.take_profit)

    click.echo(f"Entry: {quote} {settings.quote_symbol} for {base} tokens")
    click.echo(f"Stop loss below: {stop_loss_threshold(quote, settings.stop_loss_pct)} {settings.quote_symbol}")
    for point in points:
        click.echo(f"   >= {point.quote_threshold} {settings.quote_symbol}: sell {point.base_to_sell}")


@cli.command()
@click.option("--mint", default="PaperMint111111111111111111111111111111111", help="模拟代币 mint")
@click.option("--price", callback=_decimal, default="0.0001", help="买入价格（报价代币/代币）")
@click.option("--exit-price", callback=_decimal, default="0.00013", help="卖出检查时的价格")
@click.option("--base-decimals", type=int, default=6, show_default=True, help="代币精度")
def paper(mint: str, price: Decimal, exit_price: Decimal, base_decimals: int) -> None:
    """用纸交易后端跑一次完整的买入 → 止盈/止损 → 卖出流程。"""
    setup_logging()
    logger = get_logger("pool_sniper.main")
    settings = get_settings().model_copy(
        update={
            "mode": RunMode.PAPER,
            "auto_buy_delay_ms": 0,
            "auto_sell_delay_ms": 0,
            "filter_check_interval_ms": 0,
            "price_check_interval_ms": 100,
            "price_check_duration_ms": 1_000,
            "use_allow_list": False,
        }
    )
    settings.ensure_directories()

    try:
        bot = asyncio.run(_run_paper(settings, mint, price, exit_price, base_decimals))
    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("run_failed", error=str(e))
        sys.exit(1)

    for entry in bot.entries:
        click.echo(f"Entry: {entry.status} ({entry.detail})")
    for exit_outcome in bot.exits:
        click.echo(
            f"Exit: {exit_outcome.status} reason={exit_outcome.reason} "
            f"sold={exit_outcome.base_sold} proceeds={exit_outcome.quote_proceeds}"
        )
    for closed in bot.closed:
        click.echo(f"Closed: {closed.mint} proceeds={closed.quote_proceeds} sold={closed.base_sold}")


async def _run_paper(
    settings: Settings,
    mint: str,
    price: Decimal,
    exit_price: Decimal,
    base_decimals: int,
) -> SniperBot:
    pools = PoolCache()
    markets = MarketCache()
    backend = PaperSwapBackend(default_price=price)
    signer = PaperSigner()
    bus = EventBus()
    controller = PositionController(
        settings,
        pools=pools,
        markets=markets,
        backend=backend,
        signer=signer,
        pipeline=FilterPipeline(timeout_ms=settings.filter_timeout_ms),
        bus=bus,
        journal=JournalStore(settings.journal_dir),
    )
    bot = SniperBot(settings, controller, bus, signer=signer)
    if not await bot.validate():
        raise RuntimeError("validation_failed")
    bot.start()

    state = PoolState(
        pool_id=f"pool-{mint[:8]}",
        base_mint=mint,
        quote_mint=settings.quote_mint,
        base_decimals=base_decimals,
        quote_decimals=settings.quote_decimals,
        market_id=f"market-{mint[:8]}",
    )
    pools.save(state)
    markets.save(MarketInfo(market_id=state.market_id))

    bus.publish(NewCandidate(Candidate.from_pool_state(state)))
    await bus.drain()

    # 模拟钱包余额变化：价格更新后触发卖出
    position = controller.registry.get(mint)
    if position is not None and position.entry_base is not None:
        backend.set_price(mint, exit_price)
        bus.publish(WalletBalanceChanged(mint=mint, balance=position.entry_base))
        await bus.drain()

    bot.stop()
    return bot


# 支持 python -m pool_sniper.main 调用
if __name__ == "__main__":
    cli()
