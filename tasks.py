# tasks.py
"""
Developer task runner using Invoke.
Run `inv --list` to see tasks.

Key tasks:
  inv initdb [--db data/categories.sqlite]
  inv train --csv data/labelled.csv
  inv induce
  inv evaluate [--test-size 50]
  inv test
  inv clean
"""

from invoke import task
from pathlib import Path
import sys


REPO = Path(__file__).parent
DATADIR = REPO / "data"
DEFAULT_DB = DATADIR / "categories.sqlite"


def _python():
    """Return the python executable inside the current venv."""
    return sys.executable or "python"


def _catproc(c, db, *args):
    c.run(
        f'"{_python()}" catproc.py --db "{db}" ' + " ".join(args),
        pty=False,
    )


@task(help={"db": "SQLite database path (default: data/categories.sqlite)"})
def initdb(c, db=str(DEFAULT_DB)):
    """Create the schema and seed default rules/merchants."""
    _catproc(c, db, "db", "--init", "--stats")


@task(
    help={
        "csv": "Labelled CSV with description, amount, merchant, category_id",
        "db": "SQLite database path (default: data/categories.sqlite)",
    }
)
def train(c, csv, db=str(DEFAULT_DB)):
    """Replay a labelled CSV as feedback."""
    _catproc(c, db, "train", f'"{csv}"')


@task(help={"db": "SQLite database path (default: data/categories.sqlite)"})
def induce(c, db=str(DEFAULT_DB)):
    """Induce rules from the accumulated correct feedback."""
    _catproc(c, db, "induce")


@task(
    help={
        "test_size": "Most recent examples to score (max 100)",
        "db": "SQLite database path (default: data/categories.sqlite)",
    }
)
def evaluate(c, test_size=100, db=str(DEFAULT_DB)):
    """Report suggestion accuracy on the most recent feedback."""
    _catproc(c, db, "evaluate", "--test-size", str(test_size))


@task
def test(c):
    """Run unit tests with pytest."""
    c.run(f'"{_python()}" -m pytest -q', pty=False)


@task(help={"db": "SQLite database path (default: data/categories.sqlite)"})
def clean(c, db=str(DEFAULT_DB)):
    """Delete the local database."""
    p = Path(db)
    if p.exists():
        p.unlink()
        print(f"Removed {p}")
    DATADIR.mkdir(parents=True, exist_ok=True)
