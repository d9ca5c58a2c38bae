import importlib.util
from pathlib import Path

import pytest

CLI_PATH = Path(__file__).resolve().parent.parent / "retro.py"


def load_cli():
    spec = importlib.util.spec_from_file_location("retro_cli", CLI_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.asyncio
async def test_run_script_file_prints_output(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("RETRO_CONFIG", raising=False)
    script = tmp_path / "hello.retro"
    script.write_text("set $n = 2\nprint n is $n\nwrite done to C:/out.txt\n")
    cli = load_cli()
    await cli.run_script_file(str(script))
    captured = capsys.readouterr()
    assert "n is 2" in captured.out
    assert (tmp_path / "out.txt").read_text() == "done"


@pytest.mark.asyncio
async def test_run_script_file_reports_errors(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("RETRO_CONFIG", raising=False)
    script = tmp_path / "bad.retro"
    script.write_text("print ok\ncall nope\n")
    cli = load_cli()
    with pytest.raises(SystemExit) as exc:
        await cli.run_script_file(str(script))
    assert exc.value.code == 1
    captured = capsys.readouterr()
    assert "ok" in captured.out
    assert "Error on line 2: Unknown function: nope" in captured.err


@pytest.mark.asyncio
async def test_run_script_file_missing(tmp_path, capsys):
    cli = load_cli()
    with pytest.raises(SystemExit):
        await cli.run_script_file(str(tmp_path / "nope.retro"))
    assert "file not found" in capsys.readouterr().err


def test_config_file_and_environment_drive_the_cli(tmp_path, monkeypatch):
    config_file = tmp_path / "retro.yaml"
    config_file.write_text("debug: true\nmax_loop_iterations: 12\n")
    monkeypatch.setenv("RETRO_CONFIG", str(config_file))
    monkeypatch.delenv("RETRO_DEBUG", raising=False)
    monkeypatch.delenv("RETRO_MAX_LOOP_ITERS", raising=False)
    cli = load_cli()
    config = cli._load_config()
    assert config.debug is True
    assert config.max_loop_iterations == 12

    monkeypatch.setenv("RETRO_DEBUG", "0")
    assert cli._load_config().debug is False
