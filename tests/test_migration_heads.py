from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory


def test_alembic_has_single_head():
    """Ensure Alembic history stays merged so upgrades run without ambiguity."""
    repo_root = Path(__file__).resolve().parent.parent
    alembic_ini = repo_root / "migrations" / "alembic.ini"

    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(repo_root / "migrations"))

    script = ScriptDirectory.from_config(cfg)
    heads = script.get_heads()

    assert len(heads) == 1, f"Expected 1 Alembic head, found {len(heads)}: {heads}"


def test_migrations_create_every_model_table():
    repo_root = Path(__file__).resolve().parent.parent
    sources = ''.join(p.read_text() for p in (repo_root / 'migrations' / 'versions').glob('*.py'))

    from vocalcast.models.podcast import db

    for table in db.metadata.tables:
        assert f"'{table}'" in sources, table
