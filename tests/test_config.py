import pytest

from retro.retro_config import DEFAULT_AUTOEXEC_PATHS, EngineConfig, deserialize, detect_format


def test_defaults():
    config = EngineConfig()
    assert config.default_wait_ms == 1000
    assert config.max_loop_iterations == 100000
    assert config.autoexec_paths == DEFAULT_AUTOEXEC_PATHS
    assert not config.echo_output


def test_detect_format():
    assert detect_format("retro.yml") == "yaml"
    assert detect_format("retro.TOML") == "toml"
    assert detect_format("retro.json") == "json"
    assert detect_format("retro.ini") is None


def test_deserialize_formats():
    assert deserialize('{"a": 1}', fmt='json') == {'a': 1}
    assert deserialize(b"a: 1\n", fmt='yaml') == {'a': 1}
    assert deserialize("a = 1\n", fmt='toml') == {'a': 1}
    with pytest.raises(ValueError):
        deserialize("", fmt='xml')


def test_from_mapping_unwraps_section_and_coerces():
    config = EngineConfig.from_mapping({'retro': {
        'default_wait_ms': '250',
        'autoexec_paths': 'C:/boot.retro',
        'echo_output': 'yes',
    }})
    assert config.default_wait_ms == 250.0
    assert config.autoexec_paths == ('C:/boot.retro',)
    assert config.echo_output is True


def test_from_mapping_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Unknown configuration keys: bogus"):
        EngineConfig.from_mapping({'bogus': 1})


@pytest.mark.parametrize("name, text", [
    ("retro.yaml", "max_loop_iterations: 10\ndebug: true\n"),
    ("retro.toml", "[retro]\nmax_loop_iterations = 10\ndebug = true\n"),
    ("retro.json", '{"max_loop_iterations": 10, "debug": true}'),
])
def test_from_file(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    config = EngineConfig.from_file(path)
    assert config.max_loop_iterations == 10
    assert config.debug is True


def test_from_file_unknown_suffix(tmp_path):
    path = tmp_path / "retro.cfg"
    path.write_text("")
    with pytest.raises(ValueError, match="Cannot tell"):
        EngineConfig.from_file(path)


def test_environment_overrides():
    config = EngineConfig(default_wait_ms=5).with_env({'RETRO_MAX_LOOP_ITERS': '42', 'RETRO_DEBUG': '1'})
    assert config.max_loop_iterations == 42
    assert config.debug is True
    assert config.default_wait_ms == 5
    assert EngineConfig.from_env({}) == EngineConfig()
