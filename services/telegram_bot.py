import asyncio
import os
from typing import Optional

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from controllers.swap_controller import SwapController
from controllers.wallet_controller import WalletController
from models.user import User
from repositories.rate_limit_repository import RateLimitRepository
from repositories.state_repository import ConversationStateRepository
from repositories.trade_repository import TradeRepository
from services.price_service import PriceService
from services.scoring_service import ScanResult, ScoringService
from utils.config import TradingConfig, get_trading_config
from utils.formatting import (esc, format_compact, format_percent, format_price, format_sol, signed_sol,
                              truncate_address)
from utils.log_config import logger_manager
from utils.solana_utils import is_valid_solana_address

logger = logger_manager.setup_logger(__name__)

# updates atendidos a la vez; cada handler manda lo bloqueante a un hilo
CONCURRENT_UPDATES = int(os.getenv("TELEGRAM_CONCURRENT_UPDATES", "32"))

HELP_TEXT = """Commands:
/start - register and show your wallet
/balance - SOL balance
/buy <CA> <SOL> - buy a token
/sell <CA> [percent] - sell (default 100%)
/positions - open positions with live PNL
/history - last closed trades
/scan <CA> - entry score (or just paste a CA)
/withdraw <SOL> <address> - withdraw (PIN required)
/setpin <4 digits> - set withdrawal PIN
/wallets - list your wallets
/addwallet - create another wallet
/switchwallet <n> - make wallet n active
/removewallet <n> - remove wallet n
/exportkey - export the active wallet key (PIN required)
/settings - auto TP/SL status
/tp on|off - toggle auto take profit
/sl on|off - toggle auto stop loss"""


def _parse_switch(args) -> Optional[bool]:
    if not args:
        return None
    value = args[0].lower()
    if value in ("on", "1", "true", "yes"):
        return True
    if value in ("off", "0", "false", "no"):
        return False
    return None


def _parse_position(args) -> Optional[int]:
    if not args:
        return None
    try:
        return int(args[0])
    except ValueError:
        return None


def looks_like_address(text: str) -> bool:
    """Texto pegado que parece un CA de Solana (se escanea sin comando)."""
    text = (text or "").strip()
    return 32 <= len(text) <= 64 and " " not in text and is_valid_solana_address(text)


def format_scan(result: ScanResult) -> str:
    pair, score = result.pair, result.score
    lines = [f"SCAN: {pair.symbol or 'Unknown'}", pair.name or "Unknown Token", "",
             f"MC: ${format_compact(pair.effective_market_cap)}",
             f"Liq: ${format_compact(pair.liquidity_usd)}",
             f"Vol 24h: ${format_compact(pair.volume_h24)}",
             f"Price: ${pair.price_usd:g}", "",
             f"ENTRY SCORE: {score.score}/100", ""]
    if score.signals:
        lines += ["Signals:"] + [f"  {s}" for s in score.signals] + [""]
    if score.warnings:
        lines += ["Warnings:"] + [f"  {w}" for w in score.warnings] + [""]
    lines.append(score.verdict)
    if score.is_high_gamble:
        lines.append("Size accordingly or sit out.")
    return "\n".join(lines)


class TelegramBot:
    """
    Transporte de comandos (python-telegram-bot v20). Los updates se atienden en
    paralelo (hasta CONCURRENT_UPDATES) y los servicios bloqueantes (sqlite,
    requests, RPC) van a un hilo con asyncio.to_thread, así un /buy que reintenta
    no frena los comandos de otros usuarios.
    """
    def __init__(
        self,
        wallets: WalletController,
        swaps: SwapController,
        trades: TradeRepository,
        prices: PriceService,
        rate_limits: RateLimitRepository,
        state: ConversationStateRepository,
        scoring: ScoringService,
        config: Optional[TradingConfig] = None,
        token: str | None = None,
    ) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token:
            raise RuntimeError("Falta TELEGRAM_TOKEN")

        self.wallets = wallets
        self.swaps = swaps
        self.trades = trades
        self.prices = prices
        self.rate_limits = rate_limits
        self.state = state
        self.scoring = scoring
        self.config = config or get_trading_config()

        self.application = (
            Application.builder()
            .token(self.token)
            .concurrent_updates(CONCURRENT_UPDATES)
            .build()
        )

        self.application.add_handler(CommandHandler("start", self.cmd_start))
        self.application.add_handler(CommandHandler("help", self.cmd_help))
        self.application.add_handler(CommandHandler("balance", self.cmd_balance))
        self.application.add_handler(CommandHandler("buy", self.cmd_buy))
        self.application.add_handler(CommandHandler("sell", self.cmd_sell))
        self.application.add_handler(CommandHandler("positions", self.cmd_positions))
        self.application.add_handler(CommandHandler("history", self.cmd_history))
        self.application.add_handler(CommandHandler("scan", self.cmd_scan))
        self.application.add_handler(CommandHandler("withdraw", self.cmd_withdraw))
        self.application.add_handler(CommandHandler("setpin", self.cmd_setpin))
        self.application.add_handler(CommandHandler("wallets", self.cmd_wallets))
        self.application.add_handler(CommandHandler("addwallet", self.cmd_addwallet))
        self.application.add_handler(CommandHandler("switchwallet", self.cmd_switchwallet))
        self.application.add_handler(CommandHandler("removewallet", self.cmd_removewallet))
        self.application.add_handler(CommandHandler("exportkey", self.cmd_exportkey))
        self.application.add_handler(CommandHandler("settings", self.cmd_settings))
        self.application.add_handler(CommandHandler("tp", self.cmd_tp))
        self.application.add_handler(CommandHandler("sl", self.cmd_sl))
        self.application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.on_text))

        # limpieza periódica de estados caducados
        interval = int(os.getenv("STATE_PURGE_INTERVAL", "30"))
        if interval > 0 and self.application.job_queue is not None:
            self.application.job_queue.run_repeating(self._purge_state, interval=interval, first=interval,
                                                     name="purge_state")

    # ---------- helpers ----------
    async def _user(self, update: Update) -> Optional[User]:
        user = await asyncio.to_thread(self.wallets.get_user, str(update.effective_user.id))
        if user is None:
            await update.message.reply_text("Not registered. Run /start first.")
        return user

    async def _within_rate_limit(self, update: Update, user: User) -> bool:
        if await asyncio.to_thread(self.rate_limits.check_and_increment, user.id):
            return True
        await update.message.reply_text("Slow down soldier.")
        return False

    # ---------- comandos ----------
    async def cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            res = await asyncio.to_thread(self.wallets.register, str(update.effective_user.id))
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            user: User = res["user"]
            balance = await asyncio.to_thread(self.wallets.balance, user)
            head = "Welcome to the trenches." if res["status"] == "created" else "Welcome back."
            ready = "Ready to fight." if balance >= self.config.min_trade_balance else "Deposit more to trade."
            await update.message.reply_text(
                f"{head}\n\nWallet: `{user.wallet_address}`\nBalance: {format_sol(balance)} SOL\n\n"
                f"Minimum to fight: {self.config.min_trade_balance:g} SOL\n"
                f"Minimum buy: {self.config.min_buy_amount:g} SOL\n\n{ready}",
                parse_mode="Markdown",
            )
        except Exception as e:
            logger.exception(f"[start] error: {e}")
            await update.message.reply_text("Something went wrong. Try again.")

    async def cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(HELP_TEXT)

    async def cmd_balance(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            user = await self._user(update)
            if not user:
                return
            balance = await asyncio.to_thread(self.wallets.balance, user)
            await update.message.reply_text(
                f"Wallet: `{user.wallet_address}`\nBalance: {format_sol(balance)} SOL", parse_mode="Markdown"
            )
        except Exception as e:
            logger.exception(f"[balance] error: {e}")
            await update.message.reply_text("Failed to fetch balance. Try again.")

    async def cmd_buy(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args or len(context.args) < 2:
            await update.message.reply_text("Usage: /buy <token_address> <SOL_amount>\n\nExample: /buy So11111... 0.1")
            return
        token_address = context.args[0]
        try:
            amount_sol = float(context.args[1])
        except ValueError:
            await update.message.reply_text("Invalid SOL amount.")
            return
        try:
            user = await self._user(update)
            if not user or not await self._within_rate_limit(update, user):
                return
            await update.message.reply_text("Executing buy...")
            result = await asyncio.to_thread(self.swaps.execute_buy, user.identity(), token_address, amount_sol)
            if not result.success:
                await update.message.reply_text(f"Buy failed: {result.error}")
                return
            pair = await asyncio.to_thread(self.prices.get_token_pair, token_address)
            symbol = pair.symbol if pair else "Unknown"
            await update.message.reply_text(
                f"BUY EXECUTED\n\nToken: {esc(symbol)}\nAmount: {format_sol(amount_sol)} SOL\n"
                f"Tx: `{(result.signature or '')[:20]}...`\n\nPosition open. Watch it or set TP/SL.",
                parse_mode="Markdown",
            )
        except Exception as e:
            logger.exception(f"[buy] error: {e}")
            await update.message.reply_text("Buy failed. Try again.")

    async def cmd_sell(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args:
            await update.message.reply_text(
                "Usage: /sell <token_address> [percent]\n\n"
                "Examples:\n/sell So11111... 100 (sell all)\n/sell So11111... 50 (sell half)"
            )
            return
        token_address = context.args[0]
        try:
            percent = float(context.args[1]) if len(context.args) > 1 else 100.0
        except ValueError:
            await update.message.reply_text("Invalid percentage (must be > 0 and <= 100).")
            return
        try:
            user = await self._user(update)
            if not user or not await self._within_rate_limit(update, user):
                return
            await update.message.reply_text("Executing sell...")
            result = await asyncio.to_thread(self.swaps.execute_sell, user.identity(), token_address, percent)
            if not result.success:
                await update.message.reply_text(f"Sell failed: {result.error}")
                return
            pnl = result.pnl or 0.0
            await update.message.reply_text(
                f"SELL EXECUTED\n\nSold: {percent:g}%\n"
                f"PNL: {format_percent(result.pnl_percent or 0.0)} ({signed_sol(pnl)} SOL)\n"
                f"Tx: `{(result.signature or '')[:20]}...`\n\n"
                f"{'Profit secured.' if pnl >= 0 else 'Loss cut. Move on.'}",
                parse_mode="Markdown",
            )
        except Exception as e:
            logger.exception(f"[sell] error: {e}")
            await update.message.reply_text("Sell failed. Try again.")

    async def cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            user = await self._user(update)
            if not user:
                return
            trades = await asyncio.to_thread(self.trades.get_open_trades, user.id)
            if not trades:
                await update.message.reply_text("No open positions.")
                return
            pairs = await asyncio.to_thread(self.prices.get_pairs, [t.token_address for t in trades])
            lines = ["OPEN POSITIONS\n"]
            for t in trades:
                pair = pairs.get(t.token_address)
                symbol = esc(pair.symbol) if pair else truncate_address(t.token_address)
                line = f"• {symbol} `{t.token_address}`\n  Size: {format_sol(t.amount_sol)} SOL"
                pnl = t.pnl_percent_at(pair.price_native) if pair else None
                if pnl is not None:
                    line += f" | Price: {format_price(pair.price_native)} | PNL: {format_percent(pnl)}"
                lines.append(line)
            await update.message.reply_text("\n".join(lines), parse_mode="Markdown")
        except Exception as e:
            logger.exception(f"[positions] error: {e}")
            await update.message.reply_text("Failed to load positions. Try again.")

    async def cmd_history(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            user = await self._user(update)
            if not user:
                return
            trades = await asyncio.to_thread(self.trades.get_closed_trades, user.id, 10)
            if not trades:
                await update.message.reply_text("No closed trades yet.")
                return
            lines = ["LAST TRADES\n"]
            for t in trades:
                lines.append(
                    f"• {truncate_address(t.token_address)} [{t.close_reason or '-'}] "
                    f"{format_percent(t.pnl_percent or 0.0)} ({signed_sol(t.pnl_sol or 0.0)} SOL)"
                )
            await update.message.reply_text("\n".join(lines))
        except Exception as e:
            logger.exception(f"[history] error: {e}")
            await update.message.reply_text("Failed to load history. Try again.")

    async def cmd_withdraw(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args or len(context.args) < 2:
            await update.message.reply_text(
                "Usage: /withdraw <SOL_amount> <destination_address>\n\n"
                "Example: /withdraw 0.5 YourExternalWallet...\n\n"
                "Note: Requires PIN. Set one with /setpin if you haven't."
            )
            return
        try:
            amount_sol = float(context.args[0])
        except ValueError:
            await update.message.reply_text("Invalid withdrawal amount.")
            return
        destination = context.args[1]
        try:
            user = await self._user(update)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.request_withdrawal, user, amount_sol, destination)
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            await update.message.reply_text(
                f"Withdrawal request:\nAmount: {format_sol(amount_sol)} SOL\nTo: `{destination}`\n\n"
                "Reply with your 4-digit PIN to confirm.\nOr type 'cancel' to abort.",
                parse_mode="Markdown",
            )
        except Exception as e:
            logger.exception(f"[withdraw] error: {e}")
            await update.message.reply_text("Withdrawal failed. Try again.")

    async def cmd_setpin(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args:
            await update.message.reply_text("Usage: /setpin <4 digits>\n\nExample: /setpin 1234")
            return
        try:
            user = await self._user(update)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.set_pin, user, context.args[0])
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            await update.message.reply_text("PIN set successfully.\n\nDon't forget it. Required for withdrawals.")
        except Exception as e:
            logger.exception(f"[setpin] error: {e}")
            await update.message.reply_text("Failed to set PIN. Try again.")

    async def cmd_settings(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = await self._user(update)
        if not user:
            return
        await update.message.reply_text(self._settings_text(user))

    def _settings_text(self, user: User) -> str:
        tp = "ON" if user.auto_tp_enabled else "OFF"
        sl = "ON" if user.auto_sl_enabled else "OFF"
        return (f"SETTINGS\n\nAuto TP: {tp} (+{self.config.tp_percent:g}%)\n"
                f"Auto SL: {sl} ({self.config.sl_percent:g}%)\n\nToggle with /tp on|off and /sl on|off")

    async def _toggle(self, update: Update, context: ContextTypes.DEFAULT_TYPE, field: str):
        value = _parse_switch(context.args)
        if value is None:
            await update.message.reply_text(f"Usage: /{field} on|off")
            return
        try:
            user = await self._user(update)
            if not user:
                return
            kwargs = {"auto_tp": value} if field == "tp" else {"auto_sl": value}
            updated = await asyncio.to_thread(self.wallets.update_settings, user, **kwargs)
            await update.message.reply_text(self._settings_text(updated or user))
        except Exception as e:
            logger.exception(f"[{field}] error: {e}")
            await update.message.reply_text("Failed to update settings. Try again.")

    async def cmd_tp(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._toggle(update, context, "tp")

    async def cmd_sl(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._toggle(update, context, "sl")

    # ---------- escáner ----------
    async def cmd_scan(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args:
            await update.message.reply_text("Usage: /scan <token_address>")
            return
        await self._scan(update, context.args[0])

    async def _scan(self, update: Update, token_address: str):
        if not is_valid_solana_address(token_address):
            await update.message.reply_text("Invalid token address.")
            return
        try:
            await update.message.reply_text("Scanning...")
            result = await asyncio.to_thread(self.scoring.scan, token_address)
            if result is None:
                await update.message.reply_text("Token not found on DEX.\n\nMight be too new or no liquidity.")
                return
            await update.message.reply_text(format_scan(result))
        except Exception as e:
            logger.exception(f"[scan] error: {e}")
            await update.message.reply_text("Scan failed. Try again.")

    # ---------- gestor de wallets ----------
    async def cmd_wallets(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            user = await self._user(update)
            if not user:
                return
            wallets = await asyncio.to_thread(self.wallets.list_wallets, user)
            balance = await asyncio.to_thread(self.wallets.balance, user)
            lines = ["WALLET MANAGER\n",
                     f"Active: `{user.wallet_address}`",
                     f"Balance: {format_sol(balance)} SOL",
                     f"Wallets: {len(wallets)}/{self.config.max_wallets_per_user}\n"]
            for i, w in enumerate(wallets, start=1):
                lines.append(f"{i}. {truncate_address(w.wallet_address)}{' (Active)' if w.is_active else ''}")
            lines.append("\n/addwallet | /switchwallet <n> | /removewallet <n> | /exportkey")
            await update.message.reply_text("\n".join(lines), parse_mode="Markdown")
        except Exception as e:
            logger.exception(f"[wallets] error: {e}")
            await update.message.reply_text("Failed to load wallets. Try again.")

    async def cmd_addwallet(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            user = await self._user(update)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.add_wallet, user)
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            address = res["wallet"].wallet_address
            await update.message.reply_text(
                f"New Wallet Created\n\nAddress: `{address}`\nShort: {truncate_address(address)}\n\n"
                "Make it active with /switchwallet <n> (see /wallets).",
                parse_mode="Markdown",
            )
        except Exception as e:
            logger.exception(f"[addwallet] error: {e}")
            await update.message.reply_text("Failed to create wallet. Try again.")

    async def cmd_switchwallet(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        position = _parse_position(context.args)
        if position is None:
            await update.message.reply_text("Usage: /switchwallet <n>\n\nSee /wallets for the numbers.")
            return
        try:
            user = await self._user(update)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.switch_wallet, user, position)
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            await update.message.reply_text(
                f"Wallet switched successfully.\n\nActive: {truncate_address(res['wallet'].wallet_address)}"
            )
        except Exception as e:
            logger.exception(f"[switchwallet] error: {e}")
            await update.message.reply_text("Failed to switch wallet. Try again.")

    async def cmd_removewallet(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        position = _parse_position(context.args)
        if position is None:
            await update.message.reply_text("Usage: /removewallet <n>\n\nSee /wallets for the numbers.")
            return
        try:
            user = await self._user(update)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.request_removal, user, position)
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            wallet = res["wallet"]
            active = "(This is your ACTIVE wallet)\n" if wallet.is_active else ""
            await update.message.reply_text(
                f"Are you sure?\n\nWallet: {truncate_address(wallet.wallet_address)}\n{active}\n"
                "This action cannot be undone.\nReply 'confirm' to delete, anything else cancels."
            )
        except Exception as e:
            logger.exception(f"[removewallet] error: {e}")
            await update.message.reply_text("Failed to remove wallet. Try again.")

    async def cmd_exportkey(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            user = await self._user(update)
            if not user:
                return
            res = self.wallets.request_export(user)
            if not res["ok"]:
                await update.message.reply_text(res["reason"])
                return
            await update.message.reply_text(
                "Enter your 4-digit PIN to export private key:\n\nType your PIN below or \"cancel\" to abort."
            )
        except Exception as e:
            logger.exception(f"[exportkey] error: {e}")
            await update.message.reply_text("Export failed. Try again.")

    async def _delete_key_message(self, context: ContextTypes.DEFAULT_TYPE):
        chat_id, message_id = context.job.data
        try:
            await context.bot.delete_message(chat_id=chat_id, message_id=message_id)
            await context.bot.send_message(chat_id=chat_id, text="Private key message auto-deleted for security.")
        except TelegramError as e:
            logger.warning(f"[exportkey] no se pudo borrar el mensaje {message_id}: {e}")
            await context.bot.send_message(
                chat_id=chat_id,
                text="Could not auto-delete. Please delete the key message manually for security.",
            )

    # ---------- texto libre: PIN, confirmaciones y CA pegado ----------
    async def on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        telegram_id = str(update.effective_user.id)
        text = update.message.text or ""
        if self.wallets.has_pending_withdrawal(telegram_id):
            await self._confirm_withdrawal(update, telegram_id, text)
        elif self.wallets.awaiting_export_pin(telegram_id):
            await self._confirm_export(update, context, telegram_id, text)
        elif self.wallets.has_pending_removal(telegram_id):
            await self._confirm_removal(update, telegram_id, text)
        elif looks_like_address(text):
            await self._scan(update, text.strip())

    async def _confirm_withdrawal(self, update: Update, telegram_id: str, text: str):
        try:
            user = await asyncio.to_thread(self.wallets.get_user, telegram_id)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.confirm_withdrawal, user, text)
            if res["status"] == "none":
                return
            if res["status"] != "sent":
                await update.message.reply_text(res["reason"])
                return
            await update.message.reply_text(
                f"WITHDRAWAL COMPLETE\n\nAmount: {format_sol(res['amount_sol'])} SOL\n"
                f"To: `{res['destination']}`\nTx: `{res['signature'][:20]}...`\n\nFunds sent.",
                parse_mode="Markdown",
            )
        except Exception as e:
            logger.exception(f"[withdraw-pin] error: {e}")
            await update.message.reply_text("Withdrawal failed. Try again.")

    async def _confirm_export(self, update: Update, context: ContextTypes.DEFAULT_TYPE,
                              telegram_id: str, text: str):
        try:
            user = await asyncio.to_thread(self.wallets.get_user, telegram_id)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.confirm_export, user, text)
            if res["status"] == "none":
                return
            if res["status"] != "exported":
                await update.message.reply_text(res["reason"])
                return
            sent = await update.message.reply_text(
                "Security Warning\nNever share this key with anyone.\nThis message will be deleted.\n\n"
                f"Your Private Key:\n`{res['private_key']}`\n\nSave it securely NOW.",
                parse_mode="Markdown",
            )
            if context.job_queue is not None:
                context.job_queue.run_once(self._delete_key_message, when=self.config.export_message_ttl_s,
                                           data=(sent.chat_id, sent.message_id))
        except Exception as e:
            logger.exception(f"[export-pin] error: {e}")
            await update.message.reply_text("Export failed.")

    async def _confirm_removal(self, update: Update, telegram_id: str, text: str):
        try:
            user = await asyncio.to_thread(self.wallets.get_user, telegram_id)
            if not user:
                return
            res = await asyncio.to_thread(self.wallets.confirm_removal, user, text)
            if res["status"] == "none":
                return
            await update.message.reply_text("Wallet removed successfully." if res["ok"] else res["reason"])
        except Exception as e:
            logger.exception(f"[remove-confirm] error: {e}")
            await update.message.reply_text("Failed to remove wallet.")

    async def _purge_state(self, context: ContextTypes.DEFAULT_TYPE):
        n = self.state.purge_expired()
        if n:
            logger.debug(f"[state] {n} estados caducados eliminados")

    def run(self):
        logger.info("TelegramBot iniciando...")
        # main.py instala los manejadores de señales
        self.application.run_polling(stop_signals=None, close_loop=False)

    def stop_running(self):
        try:
            self.application.stop_running()
        except RuntimeError as e:
            logger.warning(f"TelegramBot no estaba corriendo: {e}")
