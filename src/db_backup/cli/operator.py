"""Interactive operator backed by rich prompts."""

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table


class RichOperator:
    """Answers confirmation and selection prompts on the terminal.

    ``ask_yes_no`` only accepts the full word ``yes``.  End of input
    (Ctrl-D) counts as an empty answer, which declines.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def _ask(self, prompt: str, default: str = "") -> str:
        try:
            return Prompt.ask(prompt, console=self.console, default=default, show_default=False)
        except EOFError:
            self.console.print()
            return default

    def ask_text(self, prompt: str) -> str:
        return self._ask(prompt)

    def ask_yes_no(self, prompt: str) -> bool:
        answer = self._ask(f"{prompt} (yes/no)", default="no")
        return answer.strip().lower() == "yes"

    def choose(self, prompt: str, options: list[str]) -> int | None:
        table = Table(show_header=False, box=None)
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Backup")
        for number, option in enumerate(options, start=1):
            table.add_row(f"{number})", option)
        self.console.print(table)

        answer = self._ask(prompt).strip()
        if not answer.isdigit():
            return None
        return int(answer) - 1

    def show(self, message: str) -> None:
        self.console.print(Panel(message, border_style="yellow"))
