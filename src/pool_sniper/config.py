"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pool_sniper.types import PriorityFee, TokenAmount


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class TransactionExecutor(str, Enum):
    """交易提交方式。warp / jito 自带优先费，不需要 compute budget 指令。"""

    DEFAULT = "default"
    WARP = "warp"
    JITO = "jito"


class TakeProfitStep(BaseModel):
    """止盈阶梯的一档：价格上涨 profit_pct 时卖出 sell_pct 的持仓。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    profit_pct: Decimal = Field(ge=0)
    sell_pct: Decimal = Field(gt=0, le=100)


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")

    # ==================== 钱包 ====================
    wallet_public_key: str = Field(default="", description="钱包公钥")
    private_key: str = Field(default="", description="钱包私钥（base58）")

    # ==================== 报价代币 ====================
    quote_mint: str = Field(
        default="So11111111111111111111111111111111111111112",
        description="报价代币 mint",
    )
    quote_symbol: str = Field(default="WSOL", description="报价代币符号")
    quote_decimals: int = Field(default=9, ge=0, le=18, description="报价代币精度")
    quote_amount: Decimal = Field(default=Decimal("0.01"), gt=0, description="每次买入的报价代币数量")

    # ==================== 买入 ====================
    one_token_at_a_time: bool = Field(default=True, description="单通道模式：同一时间只处理一个买入")
    auto_buy_delay_ms: int = Field(default=0, ge=0, description="买入前等待（毫秒）")
    max_buy_retries: int = Field(default=10, ge=0, le=100, description="买入最大尝试次数")
    buy_slippage: Decimal = Field(default=Decimal("20"), ge=0, le=100, description="买入滑点（百分比）")

    # ==================== 卖出 ====================
    auto_sell: bool = Field(default=True, description="是否监听钱包余额并自动卖出")
    auto_sell_delay_ms: int = Field(default=0, ge=0, description="卖出前等待（毫秒）")
    max_sell_retries: int = Field(default=10, ge=0, le=100, description="卖出最大尝试次数")
    sell_slippage: Decimal = Field(default=Decimal("20"), ge=0, le=100, description="卖出滑点（百分比）")
    take_profit: list[TakeProfitStep] = Field(
        default_factory=lambda: [
            TakeProfitStep(profit_pct=Decimal("10"), sell_pct=Decimal("40")),
            TakeProfitStep(profit_pct=Decimal("20"), sell_pct=Decimal("30")),
            TakeProfitStep(profit_pct=Decimal("30"), sell_pct=Decimal("30")),
        ],
        description="止盈阶梯（JSON 列表）",
    )
    stop_loss_pct: Decimal = Field(default=Decimal("20"), ge=0, le=100, description="止损（百分比）")
    price_check_interval_ms: int = Field(default=2_000, ge=0, description="价格检查间隔（毫秒）")
    price_check_duration_ms: int = Field(default=600_000, ge=0, description="价格检查总时长（毫秒）")
    quote_timeout_ms: int = Field(default=5_000, gt=0, description="单次报价请求超时（毫秒）")

    # ==================== 过滤器 ====================
    use_allow_list: bool = Field(default=False, description="只买入白名单中的代币，并跳过过滤器")
    allow_list_path: Path = Field(default=Path("snipe-list.txt"), description="白名单文件路径")
    allow_list_refresh_ms: int = Field(default=30_000, ge=0, description="白名单刷新间隔（毫秒）")
    filter_check_interval_ms: int = Field(default=2_000, ge=0, description="过滤器检查间隔（毫秒）")
    filter_check_duration_ms: int = Field(default=60_000, ge=0, description="过滤器检查总时长（毫秒）")
    consecutive_filter_matches: int = Field(default=3, ge=1, description="连续通过次数")
    filter_timeout_ms: int = Field(default=5_000, gt=0, description="单个过滤器超时（毫秒）")

    # ==================== 交易提交 ====================
    transaction_executor: TransactionExecutor = Field(
        default=TransactionExecutor.DEFAULT,
        description="交易提交方式",
    )
    compute_unit_limit: int = Field(default=101_337, ge=0, description="compute unit 上限")
    compute_unit_price: int = Field(default=421_197, ge=0, description="compute unit 价格（micro lamports）")
    retry_wait_ms: int = Field(default=0, ge=0, description="重试间隔（毫秒）")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="交易日志存储目录",
    )

    @field_validator("journal_dir", "allow_list_path", mode="before")
    @classmethod
    def parse_path(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("take_profit")
    @classmethod
    def check_take_profit(cls, v: list[TakeProfitStep]) -> list[TakeProfitStep]:
        """止盈阶梯：profit_pct 不可重复，sell_pct 总和不超过 100。"""
        seen: set[Decimal] = set()
        for step in v:
            if step.profit_pct in seen:
                raise ValueError(f"duplicate take profit level: {step.profit_pct}")
            seen.add(step.profit_pct)
        total = sum((step.sell_pct for step in v), Decimal(0))
        if total > 100:
            raise ValueError(f"take profit sell percentages add up to {total} > 100")
        return v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    @property
    def quote_amount_units(self) -> TokenAmount:
        """每次买入金额（整数最小单位）。"""
        return TokenAmount.from_decimal(self.quote_amount, self.quote_decimals)

    @property
    def uses_priority_fee_instructions(self) -> bool:
        """默认提交方式需要自己加 compute budget 指令。"""
        return self.transaction_executor == TransactionExecutor.DEFAULT

    @property
    def priority_fee(self) -> PriorityFee | None:
        """构造一次，传给交易组装步骤。"""
        if not self.uses_priority_fee_instructions:
            return None
        return PriorityFee(unit_limit=self.compute_unit_limit, unit_price=self.compute_unit_price)

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.wallet_public_key:
            missing.append("WALLET_PUBLIC_KEY")
        if not self.private_key:
            missing.append("PRIVATE_KEY")
        if self.use_allow_list and not self.allow_list_path.exists():
            missing.append("ALLOW_LIST_PATH")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
