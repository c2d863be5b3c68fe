import logging

from telegram.error import TelegramError

from config import DRY_RUN


class TelegramNotifier:
    """Delivers alert messages to a user's private chat. Never raises on send failures."""

    def __init__(self, bot, dry_run: bool = DRY_RUN):
        self.bot = bot
        self.dry_run = dry_run

    async def notify(self, user_id, message: str, parse_mode: str = "HTML") -> bool:
        if self.dry_run:
            logging.info("DRY_RUN enabled. Alert for user %s not sent.\n%s", user_id, message)
            return False
        try:
            await self.bot.send_message(
                chat_id=int(user_id),
                text=message,
                parse_mode=parse_mode,
                disable_web_page_preview=True,
            )
        except (TelegramError, ValueError) as exc:
            logging.warning("Failed to notify user %s: %s", user_id, exc)
            return False
        return True
