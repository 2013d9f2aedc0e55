"""Tests for CLI commands."""

from pathlib import Path

from polyswap.cli import OWNER_KEY_ENV, main
from polyswap.storage import order_repo
from polyswap.storage.database import connect, run_migrations
from polyswap.tests.fakes import SAFE, USDC, WETH


def _seed_order(db_path: str) -> int:
    conn = connect(db_path)
    run_migrations(conn)
    order_id = order_repo.create_draft_order(
        conn, SAFE, USDC, WETH, 250, 3, 1_700_000_000, 1_800_000_000,
    )
    conn.close()
    return order_id


class TestCLI:
    def test_no_command_returns_1(self, capsys):
        result = main([])
        assert result == 1

    def test_init_db(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "data" / "test.db")
        result = main(["--config", str(config_yaml_path), "--db", db_path, "init-db"])
        assert result == 0
        assert "v001_initial" in capsys.readouterr().out

        result = main(["--config", str(config_yaml_path), "--db", db_path, "init-db"])
        assert result == 0
        assert "up to date" in capsys.readouterr().out

    def test_show(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "test.db")
        order_id = _seed_order(db_path)
        result = main(["--config", str(config_yaml_path), "--db", db_path, "show", str(order_id)])
        assert result == 0
        out = capsys.readouterr().out
        assert '"status": "draft"' in out
        assert '"sell_amount": "250"' in out

    def test_show_missing(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "test.db")
        result = main(["--config", str(config_yaml_path), "--db", db_path, "show", "9"])
        assert result == 1
        assert "not found" in capsys.readouterr().out

    def test_list(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "test.db")
        _seed_order(db_path)
        result = main(["--config", str(config_yaml_path), "--db", db_path, "list", SAFE.upper().replace("0X", "0x")])
        assert result == 0
        out = capsys.readouterr().out
        assert f"Orders for {SAFE}: 1" in out
        assert "draft" in out

    def test_config_show(self, tmp_path: Path, capsys):
        config_path = tmp_path / "test.yaml"
        config_path.write_text("")
        result = main(["--config", str(config_path), "config", "show"])
        assert result == 0
        captured = capsys.readouterr()
        assert "composable_cow" in captured.out

    def test_config_set(self, config_yaml_path: Path, capsys):
        result = main([
            "--config", str(config_yaml_path),
            "config", "set", "workflow.max_setup_rounds=5",
        ])
        assert result == 0
        captured = capsys.readouterr()
        assert "5" in captured.out

    def test_config_set_out_of_range(self, config_yaml_path: Path, capsys):
        result = main([
            "--config", str(config_yaml_path),
            "config", "set", "workflow.propagation_delay_seconds=30",
        ])
        assert result == 1
        assert "Error" in capsys.readouterr().out


class TestWorkflowCommands:
    def test_broadcast_needs_wallet(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "test.db")
        result = main(["--config", str(config_yaml_path), "--db", db_path, "broadcast", "1"])
        assert result == 1
        assert "--safe or --signer-url" in capsys.readouterr().out

    def test_broadcast_rejects_bad_id(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "test.db")
        result = main(["--config", str(config_yaml_path), "--db", db_path, "broadcast", "abc"])
        assert result == 1
        assert "invalid order ID" in capsys.readouterr().out

    def test_safe_needs_owner_key(self, tmp_path: Path, config_yaml_path: Path, monkeypatch, capsys):
        monkeypatch.delenv(OWNER_KEY_ENV, raising=False)
        db_path = str(tmp_path / "test.db")
        result = main([
            "--config", str(config_yaml_path), "--db", db_path,
            "cancel", "0x" + "22" * 32, "--safe", SAFE,
        ])
        assert result == 1
        assert OWNER_KEY_ENV in capsys.readouterr().out

    def test_signer_url_needs_address(self, tmp_path: Path, config_yaml_path: Path, capsys):
        db_path = str(tmp_path / "test.db")
        result = main([
            "--config", str(config_yaml_path), "--db", db_path,
            "cancel", "0x" + "22" * 32, "--signer-url", "http://localhost:8545",
        ])
        assert result == 1
        assert "--address" in capsys.readouterr().out

    def test_cancel_without_clob_key(self, tmp_path: Path, config_yaml_path: Path, monkeypatch, capsys):
        monkeypatch.setenv(OWNER_KEY_ENV, "0x" + "4c" * 32)
        monkeypatch.delenv("POLYMARKET_PRIVATE_KEY", raising=False)
        db_path = str(tmp_path / "test.db")
        result = main([
            "--config", str(config_yaml_path), "--db", db_path,
            "cancel", "0x" + "22" * 32, "--safe", SAFE,
        ])
        assert result == 1
        assert "Error: POLYMARKET_PRIVATE_KEY not set" in capsys.readouterr().out

    def test_broadcast_without_clob_key(self, tmp_path: Path, config_yaml_path: Path, monkeypatch, capsys):
        monkeypatch.delenv("POLYMARKET_PRIVATE_KEY", raising=False)
        db_path = str(tmp_path / "test.db")
        order_id = _seed_order(db_path)
        result = main([
            "--config", str(config_yaml_path), "--db", db_path, "broadcast", str(order_id),
            "--signer-url", "http://localhost:8545", "--address", SAFE,
        ])
        assert result == 1
        assert "POLYMARKET_PRIVATE_KEY" in capsys.readouterr().out
