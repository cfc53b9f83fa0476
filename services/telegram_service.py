from __future__ import annotations
import os, requests
from typing import Optional

from repositories.user_repository import UserRepository
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN")


class TelegramService:
    """
    Notificador best-effort por la Bot API (HTTP). Lo usa el monitor TP/SL
    desde su propio hilo: nunca lanza, solo registra el fallo
    (usuario que bloqueó el bot, red caída...).
    """
    def __init__(self, users: UserRepository, token: str | None = None,
                 session: Optional[requests.Session] = None) -> None:
        self.token = token or TELEGRAM_TOKEN
        self.users = users
        self.session = session or requests.Session()
        if not self.token:
            logger.warning("TelegramService sin TOKEN; se desactivan envíos.")

    @property
    def api_base(self) -> str | None:
        return f"https://api.telegram.org/bot{self.token}" if self.token else None

    def send(self, chat_id: str | int, text: str) -> bool:
        if not self.api_base:
            return False
        payload = {"chat_id": chat_id, "text": text}
        try:
            self.session.post(f"{self.api_base}/sendMessage", json=payload, timeout=10).raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error(f"❌ Error enviando Telegram a {chat_id}: {e}")
            return False

    @log_function
    def notify(self, user_id: int, message: str) -> None:
        """Entrega el mensaje al dueño del trade (user_id interno)."""
        try:
            chat_id = self.users.telegram_id_for(user_id)
        except Exception as e:
            logger.error(f"No se pudo resolver telegram_id de user {user_id}: {e}")
            return
        if not chat_id:
            logger.warning(f"Usuario {user_id} sin telegram_id; notificación descartada.")
            return
        self.send(chat_id, message)
