"""Allow ``python -m slack_digest``."""

from .cli import app

app(prog_name="slack-digest")
