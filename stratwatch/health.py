"""Strategy health evaluation — alert rules, pure math, no I/O.

Turns a strategy snapshot plus its signal history into a severity-tagged
alert list.  Alerts carry no identity across polls.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from stratwatch.metrics import newest_signal_time, signals_per_hour
from stratwatch.sources.models import HealthStatus, Signal, Strategy

SILENT_THRESHOLD_MIN = 60.0
DRAWDOWN_CRIT_PCT = 5.0
DRAWDOWN_WARN_PCT = 3.0
LOSS_CRIT_USD = -500.0

WARN = "warn"
CRIT = "crit"


@dataclass(frozen=True)
class HealthAlert:
    level: str  # "warn" or "crit"
    text: str


@dataclass(frozen=True)
class StrategyHealthRow:
    """Per-strategy health card: snapshot, cadence, and alerts."""

    strategy: Strategy
    signals: list[Signal]
    last_signal_time: Optional[datetime]
    signals_per_hour: float
    alerts: list[HealthAlert] = field(default_factory=list)

    @property
    def has_alerts(self) -> bool:
        return bool(self.alerts)


@dataclass(frozen=True)
class HealthReport:
    """One poll cycle's health view: service heartbeat plus strategy rows."""

    service: HealthStatus
    rows: list[StrategyHealthRow]

    @property
    def service_ok(self) -> bool:
        return service_ok(self.service)


def service_ok(health: Optional[HealthStatus]) -> bool:
    """``True`` when the service heartbeat reports ``"healthy"``."""
    return health is not None and health.status == "healthy"


def build_alerts(
    strategy: Strategy,
    signals: list[Signal],
    now: datetime,
    threshold_minutes: float = SILENT_THRESHOLD_MIN,
) -> list[HealthAlert]:
    """Evaluate silence, drawdown, and loss rules for one strategy.

    Rules run in that order and every matching rule emits an alert.
    Disabled strategies produce no alerts.
    """
    if not strategy.enabled:
        return []

    alerts: list[HealthAlert] = []

    last = newest_signal_time(signals)
    if last is None:
        alerts.append(HealthAlert(WARN, "No signals recorded yet"))
    else:
        mins = (now - last).total_seconds() / 60.0
        if mins > threshold_minutes * 2:
            alerts.append(
                HealthAlert(CRIT, f"No signals for {round(mins)}m, strategy may be down")
            )
        elif mins > threshold_minutes:
            alerts.append(HealthAlert(WARN, f"No signals for {round(mins)}m"))

    dd = strategy.max_drawdown
    if dd > DRAWDOWN_CRIT_PCT:
        alerts.append(
            HealthAlert(CRIT, f"Max drawdown {dd:.1f}% exceeds {DRAWDOWN_CRIT_PCT:g}% limit")
        )
    elif dd > DRAWDOWN_WARN_PCT:
        alerts.append(HealthAlert(WARN, f"Drawdown at {dd:.1f}%"))

    if strategy.total_pnl < LOSS_CRIT_USD:
        alerts.append(
            HealthAlert(
                CRIT,
                f"Total P&L {strategy.total_pnl:.0f} below -${abs(LOSS_CRIT_USD):g} threshold",
            )
        )

    return alerts


def build_health_row(
    strategy: Strategy,
    signals: list[Signal],
    now: datetime,
    threshold_minutes: float = SILENT_THRESHOLD_MIN,
) -> StrategyHealthRow:
    """Assemble the health card for one strategy."""
    return StrategyHealthRow(
        strategy=strategy,
        signals=signals,
        last_signal_time=newest_signal_time(signals),
        signals_per_hour=signals_per_hour(signals),
        alerts=build_alerts(strategy, signals, now, threshold_minutes),
    )
