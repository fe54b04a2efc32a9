import logging
import os

from rich.console import Console
from rich.logging import RichHandler
from rich.rule import Rule
from rich.text import Text
from rich.theme import Theme

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

FILE_FORMAT = "[%(asctime)s] - %(levelname)s - %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

THEME = Theme({
    "logging.level.success": "bold green",
    "logging.level.info": "green",
    "logging.level.warning": "bold yellow",
    "rule.line": "magenta",
})

CONSOLE = Console(theme=THEME, highlight=False)


def setup_logging(debug=False, console=None):
    console = console or CONSOLE
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = RichHandler(console=console, show_time=False, show_path=False,
                          markup=False, rich_tracebacks=True)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def add_log_file(path):
    """Mirror every record to ``path``. Returns False if it can't be opened."""
    try:
        handler = logging.FileHandler(path)
    except OSError as exc:
        logging.warning("Cannot write log file %s: %s" % (path, exc.strerror))
        return False
    handler.setFormatter(logging.Formatter(FILE_FORMAT, FILE_DATEFMT))
    logging.getLogger().addHandler(handler)
    try:
        os.chmod(path, 0o640)
    except OSError:
        logging.debug("Could not chmod %s" % path)
    logging.debug("Logging initialized: %s" % path)
    return True


def success(message):
    logging.log(SUCCESS, message)


def header(title, console=None):
    console = console or CONSOLE
    console.print()
    console.print(Rule(Text(title, style="bold magenta")))
    console.print()
    logging.debug("== %s ==" % title)
