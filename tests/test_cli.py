"""
Unit tests for the CLI module (vibe_server/cli.py).

Tests cover:
- Command parsing and routing
- init-db command (idempotent seeding)
- show-state command (JSON output)
- Room allowlist validation
"""

import argparse
import json
from unittest.mock import patch

import pytest

from vibe_server import cli
from vibe_server.db.store import RoomStore

pytestmark = pytest.mark.unit


# ============================================================================
# INIT-DB
# ============================================================================


def test_init_db_seeds_once(temp_rooms_dir, capsys):
    assert cli.cmd_init_db(argparse.Namespace(room="room")) == 0
    assert "Room 'room' initialized" in capsys.readouterr().out
    assert (temp_rooms_dir / "room.db").exists()

    assert cli.cmd_init_db(argparse.Namespace(room=None)) == 0
    assert "Room 'room' already initialized" in capsys.readouterr().out


def test_init_db_unknown_room(temp_rooms_dir, capsys):
    assert cli.cmd_init_db(argparse.Namespace(room="lobby")) == 1
    assert "Unknown room: lobby" in capsys.readouterr().err
    assert not (temp_rooms_dir / "lobby.db").exists()


def test_init_db_storage_failure(temp_rooms_dir, capsys):
    with patch.object(RoomStore, "initialize", side_effect=RuntimeError("disk full")):
        assert cli.cmd_init_db(argparse.Namespace(room="room")) == 1
    assert "disk full" in capsys.readouterr().err


# ============================================================================
# SHOW-STATE
# ============================================================================


def test_show_state_prints_json(temp_rooms_dir, capsys):
    assert cli.cmd_show_state(argparse.Namespace(room="room")) == 0
    output = json.loads(capsys.readouterr().out)
    assert output["room"]["state"]["tempo"] == 72
    assert output["room"]["recentPrompts"] == []


def test_show_state_unknown_room(temp_rooms_dir):
    assert cli.cmd_show_state(argparse.Namespace(room="lobby")) == 1


# ============================================================================
# MAIN
# ============================================================================


def test_main_no_command(capsys):
    with patch("sys.argv", ["vibe-server"]):
        result = cli.main()
    assert result == 0
    assert "vibe-server" in capsys.readouterr().out


def test_main_init_db():
    with patch("sys.argv", ["vibe-server", "init-db", "--room", "room"]):
        with patch.object(cli, "cmd_init_db", return_value=0) as mock_cmd:
            result = cli.main()
    assert result == 0
    assert mock_cmd.call_args.args[0].room == "room"


def test_main_run_passes_host_and_port():
    with patch("sys.argv", ["vibe-server", "run", "-p", "9000", "--host", "127.0.0.1"]):
        with patch("vibe_server.api.server.start_server") as mock_start:
            result = cli.main()
    assert result == 0
    mock_start.assert_called_once_with(host="127.0.0.1", port=9000)
