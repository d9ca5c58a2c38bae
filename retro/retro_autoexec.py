"""
Startup-script discovery: finds the first autoexec.retro and runs it.
"""
import logging
import time
from typing import Optional, Sequence

from retro.retro_bridge import resolve_awaitable

logger = logging.getLogger("retro.autoexec")

SAMPLE_AUTOEXEC = """\
# RetrOS Autoexec Script
# This script runs automatically when the system boots

print Welcome to RetrOS!
print Autoexec script is running...

# Show boot notification
notify RetrOS startup complete!

# Play startup sound
play notify

# Log boot time
set $bootTime = call time
print Boot time: $bootTime

# Example: auto-launch an app (uncomment to use)
# launch calculator

print Autoexec complete!
"""


async def _exists(fs, path: str) -> bool:
    exists = getattr(fs, "exists", None)
    if exists is not None:
        return bool(await resolve_awaitable(exists(path)))
    return await resolve_awaitable(fs.get_node(path)) is not None


async def find_autoexec(fs, paths: Optional[Sequence[str]] = None) -> Optional[str]:
    """The first candidate path that exists, or None."""
    for path in paths or ():
        try:
            if await _exists(fs, path):
                return path
        except Exception as e:
            logger.warning("Error checking %s: %s", path, e)
    return None


async def run_autoexec(engine, paths: Optional[Sequence[str]] = None):
    """Run the first autoexec script found; returns its ExecutionResult or None."""
    candidates = paths if paths is not None else engine.config.autoexec_paths
    path = await find_autoexec(engine.fs, candidates)
    if path is None:
        logger.info("No autoexec.retro found")
        return None

    logger.info("Found autoexec script: %s", path)
    await engine.events.emit('autoexec:start', {'path': path, 'timestamp': time.time()})
    context = {'AUTOEXEC': True, 'BOOT_TIME': int(time.time() * 1000)}
    result = await engine.run_file(path, context)

    if result.success:
        await engine.events.emit('autoexec:complete', {
            'path': path, 'success': True, 'timestamp': time.time(),
        })
    else:
        logger.error("Autoexec failed: %s", result.error_message)
        await engine.events.emit('autoexec:error', {
            'path': path, 'error': result.error_message, 'timestamp': time.time(),
        })
    return result


async def create_sample_autoexec(fs, path: str = "C:/Windows/autoexec.retro",
                                 content: Optional[str] = None) -> bool:
    try:
        await resolve_awaitable(fs.write_file(path, content or SAMPLE_AUTOEXEC))
    except Exception as e:
        logger.error("Failed to create autoexec at %s: %s", path, e)
        return False
    logger.info("Created autoexec at: %s", path)
    return True
