# utils/logger.py
from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
import os, functools, inspect, time
from pathlib import Path

_LEVEL_NAME = os.getenv("LOG_LEVEL", "INFO").upper()
_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "1048576"))
_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))
_TO_FILE = os.getenv("LOG_TO_FILE", "1") not in ("0", "false", "no")

# nombres de argumento que nunca se vuelcan al log
_SENSITIVE_ARGS = {"private_key", "encrypted_private_key", "secret", "pin", "pin_hash", "keypair", "text"}

_CONSOLE_FMT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_FILE_FMT = "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _LoggerManager:
    """
    Consola en el root + un fichero rotativo por módulo en LOG_DIR.
    El hilo del monitor TP/SL y los de Telegram comparten ficheros, por eso
    el formato de fichero lleva threadName.
    """
    def __init__(self, log_dir: str | None = None, to_file: bool = _TO_FILE) -> None:
        self._configured = False
        self._file_handlers: dict[str, logging.Handler] = {}
        self._log_dir = log_dir or os.getenv("LOG_DIR", "./logs")
        self._to_file = to_file

    @property
    def level(self) -> int:
        return getattr(logging, _LEVEL_NAME, logging.INFO)

    def _configure_root(self) -> None:
        if self._configured:
            return
        root = logging.getLogger()
        root.setLevel(self.level)
        if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
            console = logging.StreamHandler()
            console.setLevel(self.level)
            console.setFormatter(logging.Formatter(fmt=_CONSOLE_FMT, datefmt=_DATEFMT))
            root.addHandler(console)

        # httpx/telegram son muy verbosos en DEBUG
        for noisy in ("httpx", "httpcore", "telegram.ext", "urllib3"):
            logging.getLogger(noisy).setLevel(max(self.level, logging.WARNING))

        if self._to_file:
            Path(self._log_dir).mkdir(parents=True, exist_ok=True)
        self._configured = True

    def _file_handler(self, name: str) -> logging.Handler | None:
        file_path = os.path.join(self._log_dir, f"{name.replace('.', '_').replace('/', '_')}.log")
        try:
            fh = RotatingFileHandler(file_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
        except OSError as e:
            logging.getLogger(__name__).warning(f"No se pudo abrir log de fichero {file_path}: {e}")
            return None
        fh.setLevel(self.level)
        fh.setFormatter(logging.Formatter(fmt=_FILE_FMT, datefmt=_DATEFMT))
        return fh

    def setup_logger(self, name: str) -> logging.Logger:
        self._configure_root()
        logger = logging.getLogger(name)
        if self._to_file and name not in self._file_handlers:
            fh = self._file_handler(name)
            if fh is not None:
                self._file_handlers[name] = fh
                logger.addHandler(fh)
                logger.propagate = True  # conserva salida a consola
        return logger


logger_manager = _LoggerManager()


def _bound_args(func, args: tuple, kwargs: dict) -> dict:
    """Argumentos por nombre (posicionales incluidos) sin self, con los sensibles tapados."""
    sig = inspect.signature(func)
    try:
        bound = sig.bind_partial(*args, **kwargs)
    except TypeError:
        # firma que no encaja: no se vuelca nada que pueda ser un secreto
        return {"args": f"<{len(args)} posicionales>", **_redact(kwargs)}
    shown = {}
    for name, value in bound.arguments.items():
        if name in ("self", "cls"):
            continue
        if sig.parameters[name].kind is inspect.Parameter.VAR_KEYWORD:
            shown.update(_redact(value))
        else:
            shown[name] = "***" if name in _SENSITIVE_ARGS else value
    return shown


def _redact(kwargs: dict) -> dict:
    return {k: ("***" if k in _SENSITIVE_ARGS else v) for k, v in kwargs.items()}


def log_function(func):
    """
    Traza entrada/salida a nivel DEBUG y registra la excepción antes de relanzarla.
    Los argumentos cuyo nombre está en _SENSITIVE_ARGS salen como ***,
    se pasen por posición o por nombre.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logger_manager.setup_logger(func.__module__)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"→ {func.__qualname__} {_bound_args(func, args, kwargs)}")
        t0 = time.time()
        try:
            result = func(*args, **kwargs)
            logger.debug(f"← {func.__qualname__} ({(time.time()-t0)*1000:.1f} ms)")
            return result
        except Exception as e:
            logger.exception(f"✗ {func.__qualname__}: {e}")
            raise
    return wrapper
