"""
Thin wrapper around the Bot for everything the verification flow sends.
Delivery failures are logged and reported as False; they never undo a
decision that was already taken.
"""

import logging

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest
from aiogram.types import InlineKeyboardMarkup, Message

log = logging.getLogger(__name__)


class Notifier:
    def __init__(self, bot: Bot, operator_chat_id: int):
        self.bot = bot
        self.operator_chat_id = operator_chat_id

    async def send_to_user(self, user_id: int, text: str,
                           reply_markup: InlineKeyboardMarkup | None = None) -> bool:
        try:
            await self.bot.send_message(chat_id=user_id, text=text, reply_markup=reply_markup)
            return True
        except TelegramAPIError as e:
            log.warning("Could not message user %s: %s", user_id, e)
            return False

    async def send_to_operator_channel(self, text: str, photo: str | None = None,
                                       reply_markup: InlineKeyboardMarkup | None = None) -> bool:
        """
        Re-send the evidence photo by file_id with a caption, or plain text if there is none.
        """
        try:
            if photo:
                try:
                    await self.bot.send_photo(
                        chat_id=self.operator_chat_id, photo=photo, caption=text, reply_markup=reply_markup
                    )
                except TelegramBadRequest:
                    # screenshots sent "as file" carry a document file_id
                    await self.bot.send_document(
                        chat_id=self.operator_chat_id, document=photo, caption=text, reply_markup=reply_markup
                    )
            else:
                await self.bot.send_message(chat_id=self.operator_chat_id, text=text, reply_markup=reply_markup)
            return True
        except TelegramAPIError as e:
            log.error("Could not reach operator chat %s: %s", self.operator_chat_id, e)
            return False

    async def edit_operator_message(self, message: Message, status: str) -> bool:
        """Append a status line to an evidence message and drop its buttons."""
        try:
            if message.caption is not None:
                await message.edit_caption(caption=f"{message.caption}\n\n{status}", reply_markup=None)
            else:
                await message.edit_text(f"{message.text or ''}\n\n{status}", reply_markup=None)
            return True
        except TelegramAPIError as e:
            log.warning("Could not edit operator message %s: %s", message.message_id, e)
            return False
