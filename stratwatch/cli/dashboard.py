"""CLI dashboard — prints strategy health to the console."""

from datetime import datetime

from stratwatch.health import HealthReport
from stratwatch.metrics import time_ago


def print_health(report: HealthReport, now: datetime) -> str:
    """Format and print one health report.

    Args:
        report: Result of ``Aggregator.fetch_strategy_health``.
        now: Reference time for relative timestamps.

    Returns:
        The formatted string (also printed to stdout).
    """
    service = "healthy" if report.service_ok else f"DEGRADED ({report.service.status})"
    heartbeat = (
        time_ago(report.service.timestamp, now) if report.service.timestamp else "N/A"
    )

    lines = [
        "──────────────── StratWatch Health ────────────────",
        f"  Service:         {service}",
        f"  Last heartbeat:  {heartbeat}",
    ]
    for row in report.rows:
        s = row.strategy
        last = time_ago(row.last_signal_time, now) if row.last_signal_time else "-"
        sign = "+" if s.total_pnl >= 0 else ""
        lines += [
            "",
            f"  {s.name} [{'live' if s.enabled else 'off'}]",
            f"    Last signal:   {last}",
            f"    Signals/hr:    {row.signals_per_hour:.1f}",
            f"    Win rate:      {s.win_rate:.1f}%",
            f"    Max drawdown:  {s.max_drawdown:.2f}%",
            f"    Total P&L:     {sign}${s.total_pnl:.2f}",
        ]
        for alert in row.alerts:
            marker = "!!" if alert.level == "crit" else "!"
            lines.append(f"    {marker} {alert.text}")
    lines.append("──────────────────────────────────────────────────")

    output = "\n".join(lines)
    print(output)
    return output
