import asyncio
import sys

from backend.app.core.logging import configure_logging
from backend.app.db import init_models


async def main(drop: bool) -> None:
    # --drop recreates every table: DEV MODE ONLY
    await init_models(drop=drop)
    print(">>> Tables Created Successfully!")


if __name__ == "__main__":
    configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main(drop="--drop" in sys.argv))
