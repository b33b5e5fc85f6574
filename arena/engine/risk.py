"""Pre-trade risk checks.

Pure functions over a trade request and a snapshot of the account. Every check
runs so the caller sees all violations at once; the coordinator decides
whether they block (enforced) or are only logged (bypass).
"""

from dataclasses import dataclass, field

from arena.schemas.trade import ExitPlan, TradeRequest


@dataclass
class Violation:
    check: str  # "exit_plan", "leverage", "coin", "margin", "position_size", "exposure", "account"
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class RiskLimits:
    max_leverage: int = 40
    max_position_size_pct: float = 80.0
    max_total_exposure_pct: float = 300.0
    supported_coins: list[str] = field(default_factory=lambda: ["BTC", "ETH", "SOL", "BNB", "DOGE", "XRP"])

    @classmethod
    def from_settings(cls, settings) -> "RiskLimits":
        return cls(
            max_leverage=settings.max_leverage,
            max_position_size_pct=settings.max_position_size_pct,
            max_total_exposure_pct=settings.max_total_exposure_pct,
            supported_coins=[c.upper() for c in settings.supported_coins],
        )


@dataclass
class RiskContext:
    """Account figures the checks need, read by the caller just before validating."""
    available_cash: float
    account_value: float
    open_notional: float = 0.0
    current_price: float | None = None


def exit_plan_problems(side: str, plan: ExitPlan | None, current_price: float | None = None) -> list[str]:
    """Well-formedness of a protective exit plan for a position side."""
    if plan is None:
        return ["Exit plan is required for opening positions"]
    if not plan.has_orders:
        return ["Exit plan must set a stop_loss or a profit_target"]

    problems = []
    sl, tp = plan.stop_loss, plan.profit_target
    if sl is not None and tp is not None:
        if side == "long" and sl >= tp:
            problems.append(f"Long stop_loss {sl} must be below profit_target {tp}")
        if side == "short" and sl <= tp:
            problems.append(f"Short stop_loss {sl} must be above profit_target {tp}")
    if current_price:
        if sl is not None and ((side == "long" and sl >= current_price) or (side == "short" and sl <= current_price)):
            problems.append(f"{side} stop_loss {sl} is on the wrong side of price {current_price}")
        if tp is not None and ((side == "long" and tp <= current_price) or (side == "short" and tp >= current_price)):
            problems.append(f"{side} profit_target {tp} is on the wrong side of price {current_price}")
    return problems


def validate_trade(request: TradeRequest, context: RiskContext, limits: RiskLimits) -> list[Violation]:
    violations: list[Violation] = []
    is_open = request.action.is_open

    # 1. Exit plan
    if is_open:
        for problem in exit_plan_problems(request.side, request.exit_plan, context.current_price):
            violations.append(Violation("exit_plan", problem))

    # 2. Leverage
    if request.leverage > limits.max_leverage:
        violations.append(Violation(
            "leverage", f"Leverage {request.leverage}X exceeds maximum {limits.max_leverage}X"
        ))

    # 3. Coin
    if request.coin not in limits.supported_coins:
        violations.append(Violation("coin", f"Coin {request.coin} is not supported"))

    margin = request.margin_amount or 0.0
    if not is_open or margin <= 0:
        return violations

    # 4. Margin vs available cash
    if margin > context.available_cash:
        violations.append(Violation(
            "margin",
            f"Insufficient margin: required ${margin:.2f}, available ${context.available_cash:.2f}",
        ))

    if context.account_value <= 0:
        violations.append(Violation("account", "Unable to determine account value"))
        return violations

    # 5. Per-position cap
    max_margin = context.account_value * limits.max_position_size_pct / 100
    if margin > max_margin:
        violations.append(Violation(
            "position_size",
            f"Margin ${margin:.2f} exceeds {limits.max_position_size_pct:.0f}% of account value "
            f"(max ${max_margin:.2f})",
        ))

    # 6. Total exposure
    new_notional = margin * request.leverage
    projected = context.open_notional + new_notional
    max_exposure = context.account_value * limits.max_total_exposure_pct / 100
    if projected > max_exposure:
        violations.append(Violation(
            "exposure",
            f"Total exposure ${projected:.2f} would exceed {limits.max_total_exposure_pct:.0f}% "
            f"of account value (max ${max_exposure:.2f})",
        ))

    return violations
