"""Engagement score progress bar."""

from __future__ import annotations

from textual.widgets import Static

from ...types import EngagementAnalytics


class EngagementBar(Static):
    """Shows the score against the threshold and any unlocked follow-up."""

    DEFAULT_CSS = """
    EngagementBar {
        padding: 0 1;
        height: auto;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__("", **kwargs)
        self._analytics: EngagementAnalytics | None = None
        self._status = ""

    def on_mount(self) -> None:
        self._refresh_display()

    def update_analytics(self, analytics: EngagementAnalytics, status: str | None = None) -> None:
        self._analytics = analytics
        if status is not None:
            self._status = status
        self._refresh_display()

    def _refresh_display(self) -> None:
        a = self._analytics
        if a is None:
            self.update("[bold]ENGAGEMENT[/bold] [dim]not tracking[/dim]")
            return

        fraction = min(a.score / a.threshold, 1.0) if a.threshold > 0 else 0
        bar_width = 20
        filled = int(fraction * bar_width)
        color = "green" if a.is_threshold_reached else ("yellow" if fraction >= 0.5 else "cyan")
        bar = f"[{color}]{'█' * filled}{'░' * (bar_width - filled)}[/{color}]"

        line = f"[bold]ENGAGEMENT[/bold] {bar} {a.score:g}/{a.threshold:g}  [dim]{a.event_count} events[/dim]"
        if a.triggered_activity:
            line += f"  [bold magenta]{a.triggered_activity} unlocked[/bold magenta]"
        if self._status:
            line += f"  [dim]{self._status}[/dim]"
        self.update(line)
