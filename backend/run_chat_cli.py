"""Standalone terminal chat against the configured engine.

Run this script separately from the FastAPI server:
    python backend/run_chat_cli.py

Type a message and press Enter. Ctrl-C while an answer is streaming stops it;
Ctrl-C at the prompt (or /quit) exits. /new starts a new conversation.
"""

import asyncio
import logging
import signal
import sys
import uuid
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).resolve().parent
sys.path.insert(0, str(backend_dir))

from app.config import settings
from app.dependencies import close_services, create_services
from app.engine.errors import ChatServiceError

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)

CLI_SLOT = "cli"


async def _print_chunk(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


async def main():
    """Run the interactive chat loop."""
    services = await create_services(settings)
    coordinator = services.coordinator
    loop = asyncio.get_running_loop()
    conversation_id = uuid.uuid4().hex

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "\nyou> ")
            except (EOFError, KeyboardInterrupt):
                break
            line = line.strip()
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/new":
                coordinator.reset(conversation_id)
                conversation_id = uuid.uuid4().hex
                print("(new conversation)")
                continue

            sys.stdout.write("assistant> ")
            loop.add_signal_handler(signal.SIGINT, coordinator.cancel, CLI_SLOT)
            try:
                result = await coordinator.run_turn(
                    conversation_id, line, sink=_print_chunk, slot=CLI_SLOT
                )
            except ChatServiceError as exc:
                print(f"\n[error] {exc}")
                continue
            finally:
                loop.remove_signal_handler(signal.SIGINT)
            if result.cancelled:
                print("\n(stopped)")
            else:
                print()
    finally:
        await close_services(services)


if __name__ == "__main__":
    asyncio.run(main())
