"""Entry point for the mail agent.

Usage::

    python -m mailagent run        # poll all mailboxes until SIGTERM / SIGINT
    python -m mailagent validate   # check the configuration and exit
"""

from __future__ import annotations

import asyncio
import sys

import structlog
from pydantic import ValidationError

from .config import AgentConfig
from .errors import AgentStartupError, MailAgentError
from .logging import setup_logging
from .validation import has_errors, log_config_summary, log_issues, validate_config

logger = structlog.get_logger()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    command = args[0] if args else "run"
    if command not in ("run", "validate"):
        print("Usage: python -m mailagent <run|validate>", file=sys.stderr)
        return 1

    try:
        config = AgentConfig()
    except ValidationError as exc:
        setup_logging(json=False)
        logger.error("config_invalid", errors=exc.errors(include_url=False))
        return 1

    setup_logging(json=config.log_json, level=config.log_level)
    log_config_summary(config)
    issues = validate_config(config)
    log_issues(issues)
    if has_errors(issues):
        return 1
    if command == "validate":
        return 0

    from .agent import MailAgent

    try:
        agent = MailAgent(config)
        asyncio.run(agent.run())
    except AgentStartupError as exc:
        logger.critical("agent_startup_failed", error=str(exc))
        return 1
    except MailAgentError as exc:
        logger.critical("agent_failed", error=str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
