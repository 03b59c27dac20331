"""
Market-structure strategy (ICT / smart-money concepts).

Building blocks, all computed from the trailing window only:
- Swing points: fractal highs/lows (higher/lower than 2 candles each side)
- Structure: higher highs / lower lows give the trend; a close beyond the
  last swing is a break of structure (BOS); a directional leg whose latest
  swings turn the trend is a change of character (CHoCH)
- Order blocks: last opposite candle before an engulfing move whose range
  is > 1.5x its own; mitigated once price closes through them
- Fair value gaps: 3-candle imbalances of at least MIN_FVG_SIZE; filled
  once price closes back into them
- Liquidity zones: equal highs/lows (within tolerance) touched twice or more
- Kill zones: UTC hours 00-03, 07-10 and 12-15 (inclusive)

Setups in priority order:
1. Kill zone + trend-aligned order block retest (confidence 90, 3R)
2. Fair value gap retest after a liquidity sweep (confidence 85, 2.5R)
3. Break-of-structure retest (confidence 80, 2R)
"""

from dataclasses import dataclass
from typing import Optional

import pandas as pd

from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import StrategyState
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import TradingSignal, risk_reward_signal

MIN_FVG_SIZE = 0.0005
LIQUIDITY_TOLERANCE = 0.0002
STRUCTURE_LOOKBACK = 50
ORDER_BLOCK_LOOKBACK = 50
FVG_LOOKBACK = 20
ORDER_BLOCK_EXPANSION = 1.5

KILL_ZONES = {
    "asian": (0, 3),
    "london": (7, 10),
    "newyork": (12, 15),
}


@dataclass(frozen=True)
class MarketStructure:
    """Swing-based structure of the recent window."""

    trend: str  # "bullish", "bearish" or "ranging"
    higher_highs: bool
    lower_lows: bool
    last_swing_high: float
    last_swing_low: float
    break_of_structure: bool
    change_of_character: bool


@dataclass(frozen=True)
class OrderBlock:
    """Unmitigated institutional supply/demand candle."""

    kind: str  # "bullish" or "bearish"
    high: float
    low: float


@dataclass(frozen=True)
class FairValueGap:
    """Unfilled three-candle imbalance."""

    kind: str
    high: float
    low: float


@dataclass(frozen=True)
class LiquidityZone:
    """Level where resting stops accumulate."""

    level: float
    kind: str  # "buy_stops" (equal highs) or "sell_stops" (equal lows)
    touches: int

    @property
    def strength(self) -> int:
        return min(self.touches * 2, 10)


def _rising(swings: list[float]) -> bool:
    return len(swings) >= 2 and bool(swings[-1] > swings[-2])


def _falling(swings: list[float]) -> bool:
    return len(swings) >= 2 and bool(swings[-1] < swings[-2])


def _trend(higher_highs: bool, lower_lows: bool) -> str:
    if higher_highs and not lower_lows:
        return "bullish"
    if lower_lows and not higher_highs:
        return "bearish"
    return "ranging"


def identify_market_structure(df: pd.DataFrame, lookback: int = STRUCTURE_LOOKBACK) -> MarketStructure:
    """Derive trend and structure breaks from fractal swing points."""
    recent = df.iloc[-lookback:]
    highs = recent["high"].to_numpy(dtype=float)
    lows = recent["low"].to_numpy(dtype=float)

    swing_highs: list[float] = []
    swing_lows: list[float] = []
    for i in range(2, len(recent) - 2):
        if highs[i] > max(highs[i - 2], highs[i - 1], highs[i + 1], highs[i + 2]):
            swing_highs.append(highs[i])
        if lows[i] < min(lows[i - 2], lows[i - 1], lows[i + 1], lows[i + 2]):
            swing_lows.append(lows[i])

    last_swing_high = swing_highs[-1] if swing_highs else float(highs[-1])
    last_swing_low = swing_lows[-1] if swing_lows else float(lows[-1])

    higher_highs = _rising(swing_highs)
    lower_lows = _falling(swing_lows)
    trend = _trend(higher_highs, lower_lows)
    # trend of the leg before the latest swing points
    previous_trend = _trend(_rising(swing_highs[:-1]), _falling(swing_lows[:-1]))

    close = float(recent["close"].iloc[-1])
    break_of_structure = bool(
        (trend == "bullish" and close > last_swing_high)
        or (trend == "bearish" and close < last_swing_low)
    )
    change_of_character = previous_trend != "ranging" and trend != previous_trend

    return MarketStructure(
        trend=trend,
        higher_highs=higher_highs,
        lower_lows=lower_lows,
        last_swing_high=float(last_swing_high),
        last_swing_low=float(last_swing_low),
        break_of_structure=break_of_structure,
        change_of_character=change_of_character,
    )


def find_order_blocks(df: pd.DataFrame, lookback: int = ORDER_BLOCK_LOOKBACK) -> list[OrderBlock]:
    """Order blocks in the lookback window that price has not closed through."""
    opens = df["open"].to_numpy(dtype=float)
    highs = df["high"].to_numpy(dtype=float)
    lows = df["low"].to_numpy(dtype=float)
    closes = df["close"].to_numpy(dtype=float)
    count = len(df)
    current_close = closes[-1]

    blocks: list[OrderBlock] = []
    start = max(1, count - min(lookback, count - 1))
    for i in range(start, count - 1):
        nxt = i + 1
        expansion = (highs[nxt] - lows[nxt]) > (highs[i] - lows[i]) * ORDER_BLOCK_EXPANSION

        if closes[i] < opens[i] and closes[nxt] > opens[nxt] and closes[nxt] > highs[i] and expansion:
            if current_close >= lows[i]:
                blocks.append(OrderBlock(kind="bullish", high=highs[i], low=lows[i]))

        if closes[i] > opens[i] and closes[nxt] < opens[nxt] and closes[nxt] < lows[i] and expansion:
            if current_close <= highs[i]:
                blocks.append(OrderBlock(kind="bearish", high=highs[i], low=lows[i]))

    return blocks


def find_fair_value_gaps(
    df: pd.DataFrame,
    lookback: int = FVG_LOOKBACK,
    min_size: float = MIN_FVG_SIZE,
) -> list[FairValueGap]:
    """Unfilled three-candle imbalances, oldest first."""
    highs = df["high"].to_numpy(dtype=float)
    lows = df["low"].to_numpy(dtype=float)
    count = len(df)
    if count < 3:
        return []
    current_close = float(df["close"].iloc[-1])

    gaps: list[FairValueGap] = []
    for i in range(max(0, count - lookback), count - 2):
        bullish_gap = lows[i + 2] - highs[i]
        if bullish_gap > 0 and bullish_gap >= min_size and current_close > highs[i]:
            gaps.append(FairValueGap(kind="bullish", high=lows[i + 2], low=highs[i]))

        bearish_gap = lows[i] - highs[i + 2]
        if bearish_gap > 0 and bearish_gap >= min_size and current_close < lows[i]:
            gaps.append(FairValueGap(kind="bearish", high=lows[i], low=highs[i + 2]))

    return gaps


def identify_liquidity_zones(
    df: pd.DataFrame,
    lookback: int = STRUCTURE_LOOKBACK,
    tolerance: float = LIQUIDITY_TOLERANCE,
) -> list[LiquidityZone]:
    """Equal highs (buy stops) and equal lows (sell stops) touched at least twice."""
    recent = df.iloc[-lookback:]

    def _cluster(values) -> list[list[float]]:
        clusters: list[list[float]] = []  # [level, touches]
        for value in values:
            for cluster in clusters:
                if abs(cluster[0] - value) < tolerance:
                    cluster[1] += 1
                    break
            else:
                clusters.append([float(value), 1])
        return clusters

    zones = [
        LiquidityZone(level=level, kind="buy_stops", touches=int(touches))
        for level, touches in _cluster(recent["high"].to_numpy(dtype=float))
        if touches >= 2
    ]
    zones.extend(
        LiquidityZone(level=level, kind="sell_stops", touches=int(touches))
        for level, touches in _cluster(recent["low"].to_numpy(dtype=float))
        if touches >= 2
    )
    return zones


def kill_zone(timestamp) -> Optional[str]:
    """Name of the UTC kill-zone session containing timestamp, if any."""
    ts = pd.Timestamp(timestamp)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    for session, (start, end) in KILL_ZONES.items():
        if start <= ts.hour <= end:
            return session
    return None


class ICTSMCStrategy(Strategy):
    """Order blocks, imbalances and structure breaks."""

    strategy_id = StrategyId.ICT_SMC
    min_lookback = 50

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if len(window) < self.min_lookback:
            return self.hold("Insufficient data for structure analysis")

        current = window.iloc[-1]
        high = float(current["high"])
        low = float(current["low"])
        close = float(current["close"])
        atr = indicators.atr

        structure = identify_market_structure(window)

        session = kill_zone(current["timestamp"])
        if session is not None and not structure.change_of_character:
            for block in find_order_blocks(window):
                if block.kind != structure.trend:
                    continue
                if block.kind == "bullish" and low <= block.high and close > block.low:
                    return risk_reward_signal(
                        TradeAction.BUY,
                        entry_price=close,
                        stop_loss=block.low - atr * 0.5,
                        risk_reward=3.0,
                        confidence=90.0,
                        strategy_id=self.name,
                        reason=f"{session.upper()} kill zone + bullish order block + {structure.trend} structure",
                    )
                if block.kind == "bearish" and high >= block.low and close < block.high:
                    return risk_reward_signal(
                        TradeAction.SELL,
                        entry_price=close,
                        stop_loss=block.high + atr * 0.5,
                        risk_reward=3.0,
                        confidence=90.0,
                        strategy_id=self.name,
                        reason=f"{session.upper()} kill zone + bearish order block + {structure.trend} structure",
                    )

        zones = identify_liquidity_zones(window)
        for gap in find_fair_value_gaps(window)[-3:]:
            if gap.kind == "bullish":
                swept = next(
                    (z for z in zones if z.kind == "sell_stops" and low < z.level < close),
                    None,
                )
                if swept is not None and low <= gap.high and close > gap.low:
                    return risk_reward_signal(
                        TradeAction.BUY,
                        entry_price=close,
                        stop_loss=gap.low - atr * 0.3,
                        risk_reward=2.5,
                        confidence=85.0,
                        strategy_id=self.name,
                        reason=f"Bullish FVG fill + liquidity sweep at {swept.level:.5f}",
                    )
            else:
                swept = next(
                    (z for z in zones if z.kind == "buy_stops" and close < z.level < high),
                    None,
                )
                if swept is not None and high >= gap.low and close < gap.high:
                    return risk_reward_signal(
                        TradeAction.SELL,
                        entry_price=close,
                        stop_loss=gap.high + atr * 0.3,
                        risk_reward=2.5,
                        confidence=85.0,
                        strategy_id=self.name,
                        reason=f"Bearish FVG fill + liquidity sweep at {swept.level:.5f}",
                    )

        if structure.break_of_structure:
            if structure.trend == "bullish" and low <= structure.last_swing_high < close:
                return risk_reward_signal(
                    TradeAction.BUY,
                    entry_price=close,
                    stop_loss=structure.last_swing_low,
                    risk_reward=2.0,
                    confidence=80.0,
                    strategy_id=self.name,
                    reason=f"Bullish BOS retest at {structure.last_swing_high:.5f}",
                )
            if structure.trend == "bearish" and high >= structure.last_swing_low > close:
                return risk_reward_signal(
                    TradeAction.SELL,
                    entry_price=close,
                    stop_loss=structure.last_swing_high,
                    risk_reward=2.0,
                    confidence=80.0,
                    strategy_id=self.name,
                    reason=f"Bearish BOS retest at {structure.last_swing_low:.5f}",
                )

        return self.hold("No structure setup - waiting for confluence")
