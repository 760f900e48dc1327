#!/usr/bin/env python3
"""
News Timer TUI: terminal front end for the reading time budget.

Connects to a News Timer API server (NEWS_TIMER_API_URL, default
http://localhost:7780) and keeps working from the local cache while it is
unreachable.

Controls:
  1-9       - Select source and start it
  arrow/jk  - Move selection (up/down)
  Enter     - Select highlighted source and start it
  Space     - Start/pause
  R         - Reset today's usage
  u         - Refresh from server
  q         - Quit
"""

import argparse
import sys
import threading
import time
from collections import deque
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .allocation import format_clock
from .client import ApiClient
from .config import get_settings
from .controller import TimerController
from .errors import NewsTimerError
from .sync import LocalCache

console = Console()

STATE_STYLES = {
    "idle": ("⏹", "dim"),
    "selected": ("▶", "cyan"),
    "running": ("⏵", "green"),
    "paused": ("⏸", "yellow"),
    "daily_limit_reached": ("⛔", "red"),
}

LEVEL_COLORS = {"info": "cyan", "warning": "yellow", "error": "red"}


class NotificationLog:
    """Last few notifications, shown in the footer panel instead of printed."""

    def __init__(self, maxlen: int = 6):
        self._items: deque = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, message: str, level: str = "info") -> None:
        with self._lock:
            self._items.append((datetime.now().strftime("%H:%M:%S"), level, message))

    def items(self) -> list:
        with self._lock:
            return list(self._items)


def make_progress_bar(used: int, allocated: int, width: int = 20) -> str:
    """Text progress bar; turns red once the allocation is exceeded."""
    if allocated <= 0 or used <= 0:
        return "[dim]" + "─" * width + "[/dim]"
    ratio = min(used / allocated, 1.0)
    filled = int(width * ratio)
    empty = width - filled
    if used > allocated:
        return f"[red]{'█' * width}[/red]"
    if used == allocated:
        return f"[green]{'█' * filled}[/green]"
    return f"[cyan]{'█' * filled}[/cyan][dim]{'─' * empty}[/dim]"


def create_header(view: dict) -> Panel:
    icon, style = STATE_STYLES.get(view["state"], ("?", "white"))
    remaining = view["remainingSeconds"]
    if remaining > 600:
        remaining_color = "green"
    elif remaining > 120:
        remaining_color = "yellow"
    else:
        remaining_color = "red"

    text = Text.from_markup(
        f"[{style}]{icon} {view['state'].replace('_', ' ').title()}[/{style}]"
        f"   Today [bold]{format_clock(view['dailyUsedSeconds'])}[/bold]"
        f" / {format_clock(view['totalTimeLimit'])}"
        f"   Remaining [{remaining_color}]{format_clock(remaining)}[/{remaining_color}]"
    )
    if view["mode"] == "offline":
        text.append("   OFFLINE", style="bold yellow")
    return Panel(text, title="📰 News Timer", border_style="cyan")


def create_sources_table(view: dict, selected_idx: int) -> Table:
    table = Table(expand=True, show_edge=False)
    table.add_column("#", width=3, justify="right")
    table.add_column("Source")
    table.add_column("Used", justify="right", width=7)
    table.add_column("Alloc", justify="right", width=7)
    table.add_column("Progress", width=22)
    table.add_column("Sessions", justify="right", width=8)
    table.add_column("Overrun", justify="right", width=8)

    for index, source in enumerate(view["sources"]):
        marker = "⏵" if source["key"] == view["currentSource"] and view["isRunning"] else ""
        overrun = f"[red]+{format_clock(source['overrun'])}[/red]" if source["overrun"] else "[dim]-[/dim]"
        row_style = "reverse" if index == selected_idx else None
        table.add_row(
            str(index + 1) if index < 9 else "",
            f"{marker}{source['icon']} {source['name']}",
            format_clock(source["used"]),
            format_clock(source["allocated"]),
            make_progress_bar(source["used"], source["allocated"]),
            str(source["sessions"]),
            overrun,
            style=row_style,
        )
    return table


def create_notifications_panel(items: list) -> Panel:
    lines = Text()
    for stamp, level, message in items:
        color = LEVEL_COLORS.get(level, "white")
        lines.append(f"{stamp} ", style="dim")
        lines.append(f"{message}\n", style=color)
    if not items:
        lines.append("No notifications", style="dim")
    return Panel(lines, title="Notifications", border_style="dim")


def get_dashboard(view: dict, selected_idx: int, notifications: list) -> Layout:
    layout = Layout()
    layout.split_column(
        Layout(create_header(view), name="header", size=3),
        Layout(Panel(create_sources_table(view, selected_idx), title="Sources"), name="sources"),
        Layout(create_notifications_panel(notifications), name="notifications", size=8),
        Layout(
            Text("1-9 select · space start/pause · jk move · R reset · u refresh · q quit", style="dim"),
            name="footer",
            size=1,
        ),
    )
    return layout


def run(api_url: str, cache_path: Path, timeout: float) -> None:
    """Run the dashboard until the user quits."""
    import select
    import termios
    import tty

    notifications = NotificationLog()
    controller = TimerController(
        ApiClient(api_url, timeout=timeout), LocalCache(cache_path), notifier=notifications
    )

    console.print(f"[cyan]Starting News Timer TUI[/cyan] ({api_url})")
    controller.startup()

    quit_flag = threading.Event()
    update_flag = threading.Event()
    action_queue = []
    action_lock = threading.Lock()
    selected_index = 0

    original_terminal_settings = termios.tcgetattr(sys.stdin)

    def queue_action(action):
        with action_lock:
            action_queue.append(action)
        update_flag.set()

    def key_listener():
        """Listen for keypresses."""
        try:
            tty.setcbreak(sys.stdin.fileno())
            while not quit_flag.is_set():
                if not select.select([sys.stdin], [], [], 0.02)[0]:
                    continue
                key = sys.stdin.read(1)
                if key.lower() == "q":
                    quit_flag.set()
                    update_flag.set()
                    break
                elif key == "\x1b":
                    # Arrow keys arrive as ESC [ A/B
                    seq = sys.stdin.read(2)
                    if seq == "[A":
                        queue_action("up")
                    elif seq == "[B":
                        queue_action("down")
                elif key == "k":
                    queue_action("up")
                elif key == "j":
                    queue_action("down")
                elif key.isdigit() and key != "0":
                    queue_action(("select", int(key) - 1))
                elif key in ("\r", "\n"):
                    queue_action("select_highlighted")
                elif key == " ":
                    queue_action("toggle")
                elif key == "R":
                    queue_action("reset")
                elif key == "u":
                    queue_action("refresh")
        except (OSError, ValueError):
            quit_flag.set()
        finally:
            try:
                termios.tcsetattr(sys.stdin, termios.TCSADRAIN, original_terminal_settings)
            except termios.error:
                pass

    listener_thread = threading.Thread(target=key_listener, daemon=True)
    listener_thread.start()

    def select_at(index):
        sources = controller.view()["sources"]
        if 0 <= index < len(sources):
            controller.select_source(sources[index]["key"])

    try:
        with Live(
            get_dashboard(controller.view(), selected_index, notifications.items()),
            console=console,
            refresh_per_second=4,
            screen=True,
        ) as live:
            last_refresh = 0.0
            while not quit_flag.is_set():
                with action_lock:
                    actions_to_process = action_queue.copy()
                    action_queue.clear()

                source_count = len(controller.view()["sources"])
                for action in actions_to_process:
                    try:
                        if action == "up":
                            selected_index = max(0, selected_index - 1)
                        elif action == "down":
                            selected_index = min(max(source_count - 1, 0), selected_index + 1)
                        elif action == "select_highlighted":
                            select_at(selected_index)
                        elif isinstance(action, tuple) and action[0] == "select":
                            selected_index = action[1]
                            select_at(action[1])
                        elif action == "toggle":
                            controller.toggle()
                        elif action == "reset":
                            controller.reset()
                        elif action == "refresh":
                            controller.refresh()
                    except NewsTimerError as e:
                        notifications(e.message, "error")

                now_t = time.time()
                if actions_to_process or now_t - last_refresh >= 0.5:
                    live.update(get_dashboard(controller.view(), selected_index, notifications.items()))
                    last_refresh = now_t

                update_flag.wait(timeout=0.1)
                update_flag.clear()
    except KeyboardInterrupt:
        pass
    finally:
        quit_flag.set()
        listener_thread.join(timeout=0.5)
        try:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, original_terminal_settings)
        except termios.error:
            pass
        controller.shutdown()
        console.print("\n[dim]Goodbye![/dim]")


def main():
    """Main entry point."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="News Timer TUI")
    parser.add_argument("--api-url", default=settings.api_url, help="News Timer API base URL")
    parser.add_argument("--cache", type=Path, default=settings.cache_path, help="Offline cache file")
    parser.add_argument("--timeout", type=float, default=settings.timeout, help="Request timeout in seconds")
    args = parser.parse_args()
    run(args.api_url, args.cache, args.timeout)


if __name__ == "__main__":
    main()
