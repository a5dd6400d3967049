import json

import pytest
from unittest.mock import patch

from querypanel.cli import main, parse_args


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "databases.yaml"
    path.write_text('databases:\n  - {name: app, dialect: postgres, url: "sqlite://"}\n')
    return path


@patch("querypanel.cli.configure_logging")
def test_sql_command_prints_rows(mock_logging, config_path, capsys):
    # Act
    code = main(["--config", str(config_path), "sql", "SELECT 1 AS one"])

    # Assert
    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["rows"] == [{"one": 1}]
    assert output["fields"] == ["one"]
    mock_logging.assert_called_once()


@patch("querypanel.cli.configure_logging")
def test_sql_command_binds_params(mock_logging, config_path, capsys):
    code = main(["--config", str(config_path), "sql", "SELECT $1 AS v", "--param", "1=hello"])

    assert code == 0
    assert json.loads(capsys.readouterr().out)["rows"] == [{"v": "hello"}]


@patch("querypanel.cli.configure_logging")
def test_errors_exit_with_code_one(mock_logging, tmp_path, capsys):
    code = main(["--config", str(tmp_path / "missing.yaml"), "sql", "SELECT 1"])

    assert code == 1
    err = capsys.readouterr().err
    assert "CONFIGURATION_ERROR" in err


@patch("querypanel.cli.configure_logging")
def test_debug_flag_sets_level(mock_logging, config_path):
    main(["--config", str(config_path), "--debug", "--json-logs", "sql", "SELECT 1"])
    mock_logging.assert_called_once_with(level="DEBUG", json_format=True)


def test_parse_args_ask():
    args = parse_args(["ask", "top customers", "--db", "app", "--max-retry", "2"])
    assert args.command == "ask"
    assert args.question == "top customers"
    assert args.max_retry == 2


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        parse_args([])
