"""Command line interface for running the API server and cleanup worker."""
import asyncio

from main import main

if __name__ == "__main__":
    asyncio.run(main())
