"""
Interview Question Bot — Entry Point.

Single entry point: `python main.py` starts the Telegram bot and the
per-user question scheduler.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from interview_bot.bot.telegram_bot import main

if __name__ == "__main__":
    main()
