"""Issue a widget API key.

Usage:
    python scripts/create_api_key.py "Acme Corp" https://acme.com https://www.acme.com
"""
import asyncio
import sys

from uxaudit.database import engine
from uxaudit.models import Base
from uxaudit.services.api_keys import create_api_key


async def main(owner: str, origins: list[str]):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    api_key = await create_api_key(owner, origins)
    print(f"Owner:   {api_key.owner_name}")
    print(f"Origins: {', '.join(api_key.allowed_origins) or '(any)'}")
    print(f"Key:     {api_key.key}")
    await engine.dispose()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2:]))
