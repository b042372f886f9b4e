"""Application configuration read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

NAME = "photo-blog"

DEFAULT_STORAGE_PATH = "./photo-blog-data/"


@dataclass(frozen=True)
class Config:
    """Settings the service starts with."""

    storage_path: str = DEFAULT_STORAGE_PATH


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build a Config from environment variables, os.environ by default.

    A variable that is set, even to an empty string, overrides the default.
    """
    env = os.environ if environ is None else environ
    return Config(storage_path=env.get("STORAGE_PATH", DEFAULT_STORAGE_PATH))