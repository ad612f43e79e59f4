"""Create the Ortto custom person fields written by the sync engine."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import List, Optional

from learnsync.config import get_settings
from learnsync.ortto import CUSTOM_FIELDS, OrttoClient

LOGGER = logging.getLogger("learnsync.provision_fields")


async def provision(client: Optional[OrttoClient] = None) -> List[str]:
    ortto = client or OrttoClient.from_settings(get_settings())
    try:
        return await ortto.provision_custom_fields()
    finally:
        await ortto.aclose()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    created = asyncio.run(provision())
    LOGGER.info("Created %d of %d custom fields", len(created), len(CUSTOM_FIELDS))
    return 0


if __name__ == "__main__":
    sys.exit(main())
