from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, inspect

from podstudio.cli import main
from podstudio.errors import ValidationError
from podstudio.models import ObjectEntry


def test_cli_help_displays():
    """Test --help works without errors."""
    with patch("sys.argv", ["podstudio", "--help"]):
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0


def test_cli_serve_help():
    with patch("sys.argv", ["podstudio", "serve", "--help"]):
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0


def test_cli_no_command_shows_help(capsys):
    """Test running with no command shows help."""
    with patch("sys.argv", ["podstudio"]):
        main()
        captured = capsys.readouterr()
        assert "usage:" in captured.out.lower()


def test_cli_init_db_creates_tables(tmp_path, capsys):
    url = f"sqlite:///{tmp_path}/cli.db"
    with patch("sys.argv", ["podstudio", "init-db", "--database-url", url]):
        main()

    engine = create_engine(url)
    assert {"jobs", "assets"} <= set(inspect(engine).get_table_names())
    engine.dispose()
    assert "Tables created." in capsys.readouterr().out


def test_cli_jobs_lists_empty_database(tmp_path, capsys):
    url = f"sqlite:///{tmp_path}/cli.db"
    with patch("sys.argv", ["podstudio", "init-db", "--database-url", url]):
        main()
    with patch("sys.argv", ["podstudio", "jobs", "--database-url", url]):
        main()
    assert "Total: 0" in capsys.readouterr().out


def test_cli_ls_prints_entries(capsys):
    cache = MagicMock()
    cache.return_value.store.return_value.list.return_value = [
        ObjectEntry(key="loras/sub/", name="sub", kind="directory"),
        ObjectEntry(key="loras/a.lora", name="a.lora", size=42, extension=".lora"),
    ]
    with patch("sys.argv", ["podstudio", "ls", "loras"]):
        with patch("podstudio.cli.ClientCache", cache):
            main()

    out = capsys.readouterr().out
    assert "DIR  loras/sub/" in out
    assert "42  loras/a.lora" in out
    assert "2 entries" in out
    cache.return_value.store.return_value.list.assert_called_once_with("loras")


def test_cli_ls_unconfigured_store_exits(capsys):
    cache = MagicMock()
    cache.return_value.store.side_effect = ValidationError("Object store settings incomplete: missing bucket")
    with patch("sys.argv", ["podstudio", "ls"]):
        with patch("podstudio.cli.ClientCache", cache):
            with pytest.raises(SystemExit) as exc_info:
                main()
    assert exc_info.value.code == 1
    assert "missing bucket" in capsys.readouterr().out
