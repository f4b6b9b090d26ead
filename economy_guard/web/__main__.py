"""Entry point: python -m economy_guard.web"""
import asyncio

from ..main import EconomyGuard, configure_logging


def main():
    configure_logging()
    # Same manager as the scheduled jobs, so API changes reach bet validation
    asyncio.run(EconomyGuard().start(serve_api=True))


if __name__ == "__main__":
    main()
