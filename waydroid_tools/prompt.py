from rich.prompt import Confirm, Prompt
from rich.text import Text

from waydroid_tools.log import CONSOLE


def ask(question, default=""):
    """Free-text answer, stripped. EOF gives ``default``."""
    try:
        answer = Prompt.ask(Text(question), console=CONSOLE)
    except EOFError:
        return default
    return answer.strip()


def confirm(question, default=False):
    """Ask a yes/no question. Empty input (or EOF) gives ``default``."""
    try:
        return Confirm.ask(Text(question), default=default, console=CONSOLE)
    except EOFError:
        return default


def pause():
    ask("Press Enter to continue")
