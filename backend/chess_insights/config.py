"""
Runtime configuration read from environment variables.
"""
import os

DATABASE_PATH = os.getenv(
    "CHESS_INSIGHTS_DB",
    os.path.join(os.path.dirname(__file__), "..", "data", "chess.db"),
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# HTTP
USER_AGENT = os.getenv("CHESS_INSIGHTS_USER_AGENT", "ChessInsights/1.0")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))
STREAM_TIMEOUT = float(os.getenv("STREAM_TIMEOUT", "120"))
CHESS_COM_RATE_LIMIT_DELAY = float(os.getenv("CHESS_COM_RATE_LIMIT_DELAY", "0.1"))
LICHESS_RATE_LIMIT_DELAY = float(os.getenv("LICHESS_RATE_LIMIT_DELAY", "1.0"))  # ~60 req/min
DEFAULT_MAX_GAMES = int(os.getenv("DEFAULT_MAX_GAMES", "100"))

# Engine
STOCKFISH_PATH = os.getenv("STOCKFISH_PATH", "stockfish")
STOCKFISH_THREADS = int(os.getenv("STOCKFISH_THREADS", "1"))
STOCKFISH_HASH_MB = int(os.getenv("STOCKFISH_HASH_MB", "16"))
ENGINE_TIMEOUT = float(os.getenv("ENGINE_TIMEOUT", "30"))

# Analysis
DEFAULT_ANALYSIS_DEPTH = int(os.getenv("DEFAULT_ANALYSIS_DEPTH", "16"))
QUICK_ANALYSIS_DEPTH = int(os.getenv("QUICK_ANALYSIS_DEPTH", "12"))
QUICK_SAMPLE_INTERVAL = int(os.getenv("QUICK_SAMPLE_INTERVAL", "5"))
