import asyncio
import logging
import os
import sys
from pathlib import Path

from retro import EngineConfig, ScriptEngine
from retro.retro_fs import DiskFileSystem
from retro.retro_printer import display


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def _load_config() -> EngineConfig:
    config_path = os.environ.get("RETRO_CONFIG")
    config = EngineConfig.from_file(config_path) if config_path else EngineConfig()
    return config.with_env()


def _make_engine(root: Path, config: EngineConfig) -> ScriptEngine:
    return ScriptEngine(fs=DiskFileSystem(root), config=config)


def _print_result(result):
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return
    if result.value is not None:
        print(display(result.value))


async def run_script_file(file_path: str, config: EngineConfig | None = None):
    """Run a RetroScript file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    if not p.is_file():
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    engine = _make_engine(p.parent.resolve(), config or _load_config())
    result = await engine.run_file(p.name)
    # Print side effects (from `print`)
    for effect in result.side_effects:
        if effect.get('topics') == ['stdout']:
            print(effect.get('message', ''))
    _print_result(result)
    if result.status == 'error':
        raise SystemExit(1)


async def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    config = _load_config()
    if config.debug:
        logging.basicConfig(level=logging.DEBUG, format="[%(name)s] %(message)s")

    if len(sys.argv) > 1:
        arg = sys.argv[1]
        if not arg.startswith("-"):
            await run_script_file(arg, config)
            return

    print("RetroScript REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    engine = _make_engine(Path.cwd(), config)
    engine.initialize()

    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break

            result = await engine.run(line)
            for effect in result.side_effects:
                if effect.get('topics') == ['stdout']:
                    print(effect.get('message', ''))
            _print_result(result)

        except EOFError:
            print("\nExiting.")
            break

    engine.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
