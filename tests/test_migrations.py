"""Alembic baseline matches the SQLModel tables."""
import io
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlmodel import SQLModel

import app.models  # noqa: F401

ROOT = Path(__file__).resolve().parents[1]


def _config(buf: io.StringIO) -> Config:
    cfg = Config(output_buffer=buf, stdout=buf)
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    return cfg


def test_offline_upgrade_creates_every_table():
    buf = io.StringIO()
    command.upgrade(_config(buf), "head", sql=True)
    sql = buf.getvalue()
    for table in SQLModel.metadata.tables:
        assert f"CREATE TABLE {table}" in sql, table
    assert "REFERENCES users (id)" in sql
