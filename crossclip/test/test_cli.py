"""测试命令行参数与配置合并"""

import json

from crossclip.cli import build_parser, load_config, main


def test_serve_arguments_override_file(tmp_path, monkeypatch):
    monkeypatch.delenv("CROSSCLIP_PORT", raising=False)
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"server": {"host": "0.0.0.0", "port": "8080"}, "websocket": {"path": "/ws"}}),
        encoding="utf-8",
    )

    args = build_parser().parse_args(
        ["serve", "--config", str(path), "--port", "9001", "--log-level", "debug"]
    )
    config = load_config(args)

    assert config.port == 9001
    assert config.host == "0.0.0.0"
    assert config.log_level == "DEBUG"


def test_env_overrides_defaults(monkeypatch):
    monkeypatch.setenv("CROSSCLIP_HOST", "127.0.0.1")
    args = build_parser().parse_args(["serve"])

    config = load_config(args)

    assert config.host == "127.0.0.1"
    assert config.port == 8080


def test_invalid_config_exits_with_error(tmp_path):
    assert main(["serve", "--config", str(tmp_path / "missing.json")]) == 2


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "serve" in capsys.readouterr().out


def test_package_helpers():
    import crossclip

    server = crossclip.create_relay_server(host="127.0.0.1", port=0)

    assert crossclip.get_version() == crossclip.__version__
    assert server.config.host == "127.0.0.1"
    assert not server.running
