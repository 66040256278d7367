"""Environment-driven settings for the room server, plus logging setup."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8787"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 20  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes
MAX_OUTBOX_SIZE = 64  # queued outbound messages per client before dropping it

# --- Rooms ---
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "200"))
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I, O, 0, 1
MAX_ROOM_CODE_ATTEMPTS = 10
MAX_ROOM_NAME_LENGTH = 40
MAX_NAME_LENGTH = 24
MIN_TEAMS = 2
MAX_TEAMS = 8

# --- Clocks ---
DEFAULT_TOSSUP_SECONDS = int(os.getenv("DEFAULT_TOSSUP_SECONDS", "5"))
DEFAULT_BONUS_SECONDS = int(os.getenv("DEFAULT_BONUS_SECONDS", "20"))
TOSSUP_END_GRACE_MS = 15  # fire the end-callback slightly after the deadline

# --- Scoring ---
TOSSUP_POINTS = 4
INTERRUPT_POINTS = 4  # goes to the opponent of an incorrect interrupt
MIN_BONUS_POINTS = 0
MAX_BONUS_POINTS = 20

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
