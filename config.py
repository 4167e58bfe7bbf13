"""
config.py -- Tunable parameters for the messenger store.

Every value here is loaded from environment variables so the host app (or a
local .env file) can configure the store without touching code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining:
    1. What it controls
    2. What happens if you change it
    3. The default and why it was chosen
"""

import os
import logging

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Daemon placement
# ---------------------------------------------------------------------------

# When True, the protocol daemon runs in-process (mobile builds).
# Opening then waits for the daemon before waiting for clients, and the user
# may switch between local accounts.
# When False, the store talks to a separately reachable daemon and account
# switching is disabled.
EMBEDDED: bool = _env("MESSENGER_EMBEDDED", True, bool)

# Address of the remote daemon, only used when EMBEDDED is False.
DAEMON_ADDRESS: str = _env("MESSENGER_DAEMON_ADDRESS", "http://localhost:1337")

# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

# Account id opened on startup, and the account every non-embedded session
# reopens on after being closed.  "0" is the first account the daemon creates.
DEFAULT_ACCOUNT_ID: str = _env("MESSENGER_DEFAULT_ACCOUNT_ID", "0")

# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

# Upper bound on follow-up actions chained from a single dispatch.
# The longest legitimate chain (set next account -> closed -> opening) is 3
# steps; anything near this limit means two handlers keep re-triggering each
# other.  The chain is cut with a warning rather than looping forever.
MAX_CHAINED_ACTIONS: int = _env("MESSENGER_MAX_CHAINED_ACTIONS", 16, int)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# Python log level.  DEBUG shows every dropped interaction and unmatched ack;
# INFO is normal operations.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")


def setup_logging() -> None:
    level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


# ---------------------------------------------------------------------------
# Startup banner -- printed when a host process starts the store
# ---------------------------------------------------------------------------

def print_banner():
    """Print a summary of the active settings."""
    mode = "EMBEDDED (in-process daemon)" if EMBEDDED else "REMOTE daemon"
    lines = [
        "",
        "=" * 60,
        "  MESSENGER STORE",
        "=" * 60,
        f"  Daemon:          {mode}",
    ]
    if not EMBEDDED:
        lines.append(f"  Daemon address:  {DAEMON_ADDRESS}")
    lines += [
        f"  Default account: {DEFAULT_ACCOUNT_ID}",
        f"  Max chain:       {MAX_CHAINED_ACTIONS} actions per dispatch",
        f"  Log level:       {LOG_LEVEL}",
        "=" * 60,
        "",
    ]
    print("\n".join(lines))
