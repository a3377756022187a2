from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

import click

NotifyLevel = Literal["info", "warning", "error"]


class Host(ABC):
    """UI and messaging primitives the controller calls into."""

    @abstractmethod
    def notify(self, message: str, level: NotifyLevel = "info") -> None:
        """Show a short status line to the human."""

    @abstractmethod
    async def confirm(self, title: str, message: str) -> bool:
        """Ask the human a yes/no question."""

    @abstractmethod
    async def input(self, title: str, placeholder: str | None = None) -> str | None:
        """Ask the human for free text. ``None`` means dismissed."""

    @abstractmethod
    def send_message(self, message: str) -> None:
        """Steer the agent with a user message."""


class ConsoleHost(Host):
    """Terminal host used by the ``tddflow`` command line."""

    _COLORS = {"info": None, "warning": "yellow", "error": "red"}

    def __init__(self, *, assume_yes: bool = False) -> None:
        self.assume_yes = assume_yes

    def notify(self, message: str, level: NotifyLevel = "info") -> None:
        click.secho(message, fg=self._COLORS.get(level), err=level != "info")

    async def confirm(self, title: str, message: str) -> bool:
        if self.assume_yes:
            return True
        return click.confirm(f"{title}: {message}", default=False)

    async def input(self, title: str, placeholder: str | None = None) -> str | None:
        prompt = f"{title} ({placeholder})" if placeholder else title
        value = click.prompt(prompt, default="", show_default=False)
        value = value.strip()
        return value or None

    def send_message(self, message: str) -> None:
        click.echo(message)
