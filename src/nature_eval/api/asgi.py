"""ASGI entrypoint for the evaluation API."""

from nature_eval.api.app import create_app
from nature_eval.containers import build_container

app = create_app(build_container())
