"""
Short-horizon scalping strategies.

Quantum scalper:
    Scores the last few candles (order-flow imbalance, micro trend, tape
    speed, liquidity pockets, micro patterns) into a base confidence and
    proposes up to four candidate trades with tight fixed-distance stops.
    The highest-confidence candidate at or above MIN_CONFIDENCE is returned.

HF scalping:
    Trades pullbacks to EMA5 in the direction of SMA50 while RSI sits in the
    middle band on the trend side.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from strategy_lab.backtest.models import StrategyId, TradeAction
from strategy_lab.indicators.atr import get_atr_stop_loss
from strategy_lab.indicators.snapshot import IndicatorSnapshot
from strategy_lab.safety.money_management import StrategyState
from strategy_lab.strategy.base import Strategy
from strategy_lab.strategy.signals import TradingSignal, risk_reward_signal, target_signal

MICRO_WINDOW = 10
NEURAL_WEIGHTS = {
    "momentum": 0.35,
    "microstructure": 0.25,
    "volatility": 0.15,
    "volume": 0.15,
    "time_pattern": 0.10,
}


@dataclass(frozen=True)
class Microstructure:
    """Order-flow proxies derived from the last MICRO_WINDOW candles."""

    average_spread: float = 0.1
    order_flow_imbalance: float = 0.0
    micro_trend: str = "neutral"
    liquidity_pockets: list[float] = field(default_factory=list)
    speed_of_tape: float = 0.0


def analyze_microstructure(df: pd.DataFrame) -> Microstructure:
    """Spread, flow imbalance, micro trend, liquidity pockets and tape speed."""
    if len(df) < MICRO_WINDOW:
        return Microstructure()

    recent = df.iloc[-MICRO_WINDOW:]
    highs = recent["high"].to_numpy(dtype=float)
    lows = recent["low"].to_numpy(dtype=float)
    opens = recent["open"].to_numpy(dtype=float)
    closes = recent["close"].to_numpy(dtype=float)
    volumes = recent["volume"].to_numpy(dtype=float) if "volume" in recent else np.ones(len(recent))

    changes = np.diff(closes)
    buy_pressure = float(volumes[1:][changes > 0].sum())
    sell_pressure = float(volumes[1:][changes <= 0].sum())
    imbalance = (buy_pressure - sell_pressure) / (buy_pressure + sell_pressure + 1)

    micro_move = float(changes[-3:].sum())
    if micro_move > 0.1:
        micro_trend = "up"
    elif micro_move < -0.1:
        micro_trend = "down"
    else:
        micro_trend = "neutral"

    touches: dict[float, int] = {}
    for level in np.concatenate([highs, lows, opens, closes]):
        rounded = round(float(level), 2)
        touches[rounded] = touches.get(rounded, 0) + 1
    pockets = sorted((level for level, count in touches.items() if count >= 2), reverse=True)

    return Microstructure(
        average_spread=float(np.mean(highs - lows)),
        order_flow_imbalance=imbalance,
        micro_trend=micro_trend,
        liquidity_pockets=pockets,
        speed_of_tape=float(np.abs(changes).mean()),
    )


def multi_momentum(df: pd.DataFrame) -> float:
    """Weighted 3/5/10-candle rate of change (0.5/0.3/0.2)."""
    if len(df) < 20:
        return 0.0
    closes = df["close"].to_numpy(dtype=float)

    def _roc(periods: int) -> float:
        start = closes[-periods]
        return (closes[-1] - start) / start if start else 0.0

    return _roc(3) * 0.5 + _roc(5) * 0.3 + _roc(10) * 0.2


def detect_micro_pattern(df: pd.DataFrame) -> str:
    """Five-candle pattern: double bottom/top, breakout up/down, squeeze or none."""
    if len(df) < 5:
        return "none"
    last5 = df.iloc[-5:]
    c = last5["close"].to_numpy(dtype=float)

    if c[0] < c[1] > c[2] < c[3] > c[4] and abs(c[0] - c[2]) < 0.1:
        return "micro_double_bottom"
    if c[0] > c[1] < c[2] > c[3] < c[4] and abs(c[0] - c[2]) < 0.1:
        return "micro_double_top"

    if c[4] > c[:4].max():
        return "micro_breakout_up"
    if c[4] < c[:4].min():
        return "micro_breakout_down"

    ranges = (last5["high"] - last5["low"]).to_numpy(dtype=float)
    if ranges[-1] < ranges.mean() * 0.5:
        return "micro_squeeze"
    return "none"


class QuantumScalperStrategy(Strategy):
    """Microstructure scoring with fixed-distance micro targets."""

    strategy_id = StrategyId.QUANTUM_SCALPER
    min_lookback = 20

    MIN_CONFIDENCE = 60.0
    STOP_DISTANCE = 0.2
    TARGET_DISTANCE = 0.3

    def _base_confidence(self, window: pd.DataFrame, micro: Microstructure, momentum: float) -> float:
        ts = pd.Timestamp(window["timestamp"].iloc[-1])
        time_edge = 0.05 if ts.second % 10 == 0 else 0.0

        score = (
            momentum * 1000 * NEURAL_WEIGHTS["momentum"]
            + micro.order_flow_imbalance * NEURAL_WEIGHTS["microstructure"]
            + (1 / (micro.average_spread + 0.01)) * NEURAL_WEIGHTS["volatility"]
            + (micro.speed_of_tape / 0.5) * NEURAL_WEIGHTS["volume"]
            + time_edge * NEURAL_WEIGHTS["time_pattern"]
        )
        return min(95.0, max(40.0, 65.0 + score))

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        if len(window) < self.min_lookback:
            return self.hold("Insufficient data for microstructure analysis")

        close = float(window["close"].iloc[-1])
        micro = analyze_microstructure(window)
        momentum = multi_momentum(window)
        pattern = detect_micro_pattern(window)
        base = self._base_confidence(window, micro, momentum)

        candidates: list[TradingSignal] = []

        if micro.order_flow_imbalance > 0.2 and micro.micro_trend == "up":
            candidates.append(target_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=close - self.STOP_DISTANCE,
                take_profit=close + self.TARGET_DISTANCE,
                confidence=base + 5,
                strategy_id=self.name,
                reason=(
                    f"Flow imbalance {micro.order_flow_imbalance * 100:.0f}%, "
                    f"speed {micro.speed_of_tape:.2f}"
                ),
            ))

        if pattern == "micro_breakout_up" and momentum > 0:
            candidates.append(target_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=close - self.STOP_DISTANCE,
                take_profit=close + self.TARGET_DISTANCE,
                confidence=base + 10,
                strategy_id=self.name,
                reason=f"Pattern {pattern}, momentum {momentum * 100:.1f}%",
            ))

        if micro.liquidity_pockets:
            pocket = micro.liquidity_pockets[0]
            distance = abs(close - pocket)
            if 0.05 < distance < 0.5:
                buy = close < pocket
                candidates.append(target_signal(
                    TradeAction.BUY if buy else TradeAction.SELL,
                    entry_price=close,
                    stop_loss=close - self.STOP_DISTANCE if buy else close + self.STOP_DISTANCE,
                    take_profit=pocket + 0.1 if buy else pocket - 0.1,
                    confidence=base + 8,
                    strategy_id=self.name,
                    reason=f"Liquidity hunt toward {pocket:.2f}",
                ))

        if micro.speed_of_tape > 0.3:
            buy = momentum > 0
            stop = self.STOP_DISTANCE / 2
            target = self.TARGET_DISTANCE / 2
            candidates.append(target_signal(
                TradeAction.BUY if buy else TradeAction.SELL,
                entry_price=close,
                stop_loss=close - stop if buy else close + stop,
                take_profit=close + target if buy else close - target,
                confidence=base + 15,
                strategy_id=self.name,
                reason=f"Speed scalp: tape {micro.speed_of_tape:.2f}, {'BUY' if buy else 'SELL'}",
            ))

        best: Optional[TradingSignal] = None
        for candidate in candidates:
            if not candidate.is_actionable or candidate.confidence < self.MIN_CONFIDENCE:
                continue
            if best is None or candidate.confidence > best.confidence:
                best = candidate

        if best is None:
            return self.hold("No microstructure signal")
        return best


class HFScalpingStrategy(Strategy):
    """EMA5 pullbacks in the SMA50 trend direction."""

    strategy_id = StrategyId.HF_SCALPING
    min_lookback = 50

    MAX_EMA_DISTANCE_ATR = 0.5
    STOP_ATR_MULTIPLIER = 1.0
    RISK_REWARD = 1.5
    CONFIDENCE = 76.0

    def evaluate(
        self,
        window: pd.DataFrame,
        indicators: IndicatorSnapshot,
        state: StrategyState,
    ) -> TradingSignal:
        atr = indicators.atr
        if atr <= 0 or indicators.sma50 <= 0 or indicators.ema5 <= 0:
            return self.hold("Indicators not available")

        close = indicators.close
        if abs(indicators.ema5 - close) >= atr * self.MAX_EMA_DISTANCE_ATR:
            return self.hold("Price extended from EMA5")

        rsi = indicators.rsi

        if close > indicators.sma50 and 50 <= rsi <= 65:
            return risk_reward_signal(
                TradeAction.BUY,
                entry_price=close,
                stop_loss=get_atr_stop_loss(close, atr, self.STOP_ATR_MULTIPLIER, "buy"),
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Uptrend scalp: EMA5 pullback, RSI {rsi:.1f}",
            )

        if close < indicators.sma50 and 35 <= rsi <= 50:
            return risk_reward_signal(
                TradeAction.SELL,
                entry_price=close,
                stop_loss=get_atr_stop_loss(close, atr, self.STOP_ATR_MULTIPLIER, "sell"),
                risk_reward=self.RISK_REWARD,
                confidence=self.CONFIDENCE,
                strategy_id=self.name,
                reason=f"Downtrend scalp: EMA5 pullback, RSI {rsi:.1f}",
            )

        return self.hold("No scalp setup")
