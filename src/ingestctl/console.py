"""Operator-facing console output and interactive prompts."""

from __future__ import annotations

from typing import Optional, Sequence

import click


def step_header(number: int, total: int, title: str) -> None:
    click.echo()
    click.echo(click.style(f"━━━ Step {number}/{total}: {title} ━━━", fg="cyan", bold=True))


def section(title: str) -> None:
    click.echo()
    click.echo(click.style(title, bold=True))
    click.echo("=" * len(title))


def success(message: str) -> None:
    click.echo(click.style("✓ ", fg="green") + message)


def warning(message: str) -> None:
    click.echo(click.style("⚠ ", fg="yellow") + message)


def error(message: str) -> None:
    click.echo(click.style("✗ ", fg="red") + message, err=True)


def info(message: str) -> None:
    click.echo(click.style("→ ", fg="blue") + message)


def detail(message: str) -> None:
    click.echo(f"  {message}")


class Prompter:
    """
    Interactive questions asked during setup and teardown.

    Steps never call click directly for input so tests can substitute a
    scripted prompter.
    """

    def ask(
        self,
        text: str,
        default: Optional[str] = None,
        hide_input: bool = False,
        optional: bool = False,
    ) -> str:
        """Prompt for a value. ``optional`` accepts an empty answer."""
        if not default:
            default = "" if optional else None
        value = click.prompt(
            text,
            default=default,
            hide_input=hide_input,
            show_default=bool(default) and not hide_input,
        )
        return str(value).strip()

    def confirm(self, text: str, default: bool = False) -> bool:
        return click.confirm(text, default=default)

    def choose(self, text: str, choices: Sequence[str], default: Optional[str] = None) -> str:
        return click.prompt(
            text,
            type=click.Choice(list(choices), case_sensitive=False),
            default=default,
        )

    def pause(self, text: str = "Press Enter to continue") -> None:
        click.prompt(text, default="", show_default=False, prompt_suffix="")

    def open_url(self, url: str) -> None:
        """Show a console URL and try to open it in the browser."""
        click.echo(f"  {url}")
        try:
            click.launch(url)
        except OSError:
            pass
