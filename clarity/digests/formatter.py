"""Format clarity reports for the console.

Supports plain text (human readable) and JSON.
"""

import json
from datetime import datetime
from typing import Optional

from clarity.core.ranker import BestWindow
from clarity.core.scorer import describe_score
from clarity.digests.report import ClarityReport


class ReportFormatter:
    """Formats a clarity report for different outputs."""

    WIDTH = 50

    def __init__(self, report: ClarityReport):
        """Initialize formatter with a report.

        Args:
            report: The clarity report to format.
        """
        self.report = report

    def format_text(self) -> str:
        """Format report as plain text.

        Returns:
            Plain text formatted string.
        """
        r = self.report
        date_str = r.generated_at.strftime("%A, %B %d, %Y at %H:%M UTC")

        lines = [
            "=" * self.WIDTH,
            "WOODS HOLE WATER CLARITY",
            date_str,
            "=" * self.WIDTH,
            "",
        ]

        if r.degraded:
            lines.append("*** DEGRADED: tide or wind data unavailable ***")
            lines.append("")

        # Summary
        lines.append("SUMMARY")
        lines.append("-" * 30)
        best = r.best_site
        if best:
            lines.append(f"Best site now: {best.site.name} ({best.current_score:.0f})")
            lines.append(f"  {r.best_reason or describe_score(best.current_score)}")
        else:
            lines.append("No site scores available")
        lines.append(f"Wind: {self._format_wind(r)}")
        lines.append(f"Rain (72h): {self._format_rain(r)}")
        lines.append(f"Waves: {self._format_waves(r)}")
        lines.append("")

        # Sites
        if r.sites:
            lines.append(f"SITES (best {r.hours}h windows)")
            lines.append("-" * 30)
            for i, summary in enumerate(r.sites, 1):
                lines.append(f"{i}. {summary.site.name}")
                lines.append(
                    f"   Now: {summary.current_score:.0f} | Trend: {summary.trend} | Tide: {summary.tide_phase}"
                )
                if summary.onshore_kt is not None:
                    lines.append(f"   Onshore wind: {summary.onshore_kt:.1f} kt")
                if summary.best_window_today:
                    lines.append(f"   Best today: {self._format_window(summary.best_window_today)}")
                for window in summary.top_windows:
                    lines.append(f"     - {self._format_window(window)}")
            lines.append("")

        # Sources
        lines.append("DATA SOURCES")
        lines.append("-" * 30)
        for name, ok in r.sources.to_dict().items():
            lines.append(f"{name:<12} {'OK' if ok else 'UNAVAILABLE'}")
        for gate in r.gate_statuses:
            state = f"{gate.requests_used}/{gate.ceiling} this {gate.window}"
            if not gate.enabled:
                state = "not configured"
            lines.append(f"{gate.name:<12} quota {state}")
        lines.append(f"Last refresh: {self._format_time(r.last_refreshed_at)}")

        if r.errors:
            lines.append("")
            lines.append("ERRORS")
            for err in r.errors:
                lines.append(f"  - {err}")

        # Footer
        lines.extend([
            "",
            "=" * self.WIDTH,
            "Data: NOAA CO-OPS, NDBC, OpenWeather, Stormglass",
            "=" * self.WIDTH,
        ])

        return "\n".join(lines)

    def format_json(self) -> str:
        """Format report as indented JSON."""
        return json.dumps(self.report.to_dict(), indent=2)

    def _format_window(self, window: BestWindow) -> str:
        start = window.start.strftime("%a %H:%M")
        end = window.end.strftime("%H:%M")
        return f"{start}-{end} avg {window.average_score:.1f}"

    def _format_time(self, value: Optional[datetime]) -> str:
        if value is None:
            return "never"
        return value.strftime("%Y-%m-%d %H:%M UTC")

    def _format_wind(self, r: ClarityReport) -> str:
        if not r.wind:
            return "N/A"
        gust = f", gusts {r.wind.gust_kt:.0f} kt" if r.wind.gust_kt else ""
        return f"{r.wind.speed_kt:.1f} kt from {r.wind.direction_deg:.0f}°{gust}"

    def _format_rain(self, r: ClarityReport) -> str:
        if not r.precipitation:
            return "N/A"
        return f"{r.precipitation.last_72h_mm:.1f} mm"

    def _format_waves(self, r: ClarityReport) -> str:
        if not r.waves:
            return "N/A"
        period = f" @ {r.waves.period_s:.0f}s" if r.waves.period_s else ""
        return f"{r.waves.height_m:.1f} m{period}"


def format_text(report: ClarityReport) -> str:
    """Convenience function to format a report as text."""
    return ReportFormatter(report).format_text()


def format_json(report: ClarityReport) -> str:
    """Convenience function to format a report as JSON."""
    return ReportFormatter(report).format_json()
