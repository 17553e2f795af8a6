"""FastAPI application and command-line entry point for the calendar assistant"""
import argparse
import asyncio
import logging
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request

# Load environment variables before settings are read
load_dotenv()

from palaver import __version__
from palaver.config import Settings, settings
from palaver.core.bots import FacebookBot, SlackBot, SMSBot, TerminalBot, WebBot
from palaver.core.conversation import ConversationOrchestrator
from palaver.core.database import JsonUserStore, PostgresUserStore, UserStore
from palaver.core.services import WitService
from palaver.core.web import Router

logger = logging.getLogger(__name__)

HTTP_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_app(orchestrator: ConversationOrchestrator) -> FastAPI:
    """
    Build the web app: a health check plus everything the orchestrator and
    its backends registered (settings pages, OAuth callback, webhooks).
    """
    app = FastAPI(
        title="Palaver Calendar Assistant",
        version=__version__,
    )
    router = Router()
    # Share the orchestrator's list, so backends added later are served too
    router.routes = orchestrator.web_routes
    app.state.orchestrator = orchestrator
    app.state.router = router

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    @app.api_route("/{path:path}", methods=HTTP_METHODS, include_in_schema=False)
    async def bridge(request: Request):
        return await router.respond(request)

    return app


def open_store(config: Settings) -> UserStore:
    if config.DATABASE_URL:
        return PostgresUserStore.connect(config.DATABASE_URL)
    return JsonUserStore(config.DB_PATH)


def add_backends(orchestrator: ConversationOrchestrator, opts: argparse.Namespace,
                 config: Settings) -> None:
    """Add each backend requested on the command line whose credentials are set."""
    if config.office_configured:
        orchestrator.add_office(config.OFFICE_CLIENT_ID, config.OFFICE_CLIENT_SECRET)

    if opts.slack:
        if config.SLACK_BOT_TOKEN:
            orchestrator.add_bot(SlackBot(
                config.SLACK_BOT_TOKEN,
                signing_secret=config.SLACK_SIGNING_SECRET,
                status_channel=config.SLACK_STATUS_CHANNEL,
            ))
        else:
            logger.error("missing SLACK_BOT_TOKEN")

    if opts.fb:
        if config.FB_PAGE_TOKEN and config.FB_VERIFY_TOKEN:
            orchestrator.add_bot(FacebookBot(config.FB_PAGE_TOKEN, config.FB_VERIFY_TOKEN))
        else:
            logger.error("missing FB_PAGE_TOKEN or FB_VERIFY_TOKEN")

    if opts.sms:
        if config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_PHONE_NUMBER:
            orchestrator.add_bot(SMSBot(
                config.TWILIO_ACCOUNT_SID,
                config.TWILIO_AUTH_TOKEN,
                config.TWILIO_PHONE_NUMBER,
                validate_requests=config.TWILIO_VALIDATE_REQUESTS,
            ))
        else:
            logger.error("missing TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN or TWILIO_PHONE_NUMBER")

    if opts.web:
        orchestrator.add_bot(WebBot())

    for bot in orchestrator.bots:
        bot.reply_timeout = config.REPLY_TIMEOUT


async def run(opts: argparse.Namespace, config: Settings) -> None:
    """Run the web server, the backends, and the terminal if requested."""
    orchestrator = ConversationOrchestrator(
        WitService(config.WIT_ACCESS_TOKEN, config.WIT_API_VERSION),
        open_store(config),
        config.WEB_URL,
        settings_timeout=config.SETTINGS_TIMEOUT,
    )
    add_backends(orchestrator, opts, config)

    terminal: Optional[TerminalBot] = None
    if opts.term:
        terminal = TerminalBot()
        terminal.reply_timeout = config.REPLY_TIMEOUT
        orchestrator.register(terminal)

    server = uvicorn.Server(uvicorn.Config(
        create_app(orchestrator),
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
    ))
    logger.info(f"web server running at {config.WEB_URL}")

    jobs = [server.serve()] + [bot.start() for bot in orchestrator.bots]
    try:
        if terminal is not None:
            # Leaving the terminal shuts the whole assistant down
            serving = asyncio.gather(*jobs)
            await terminal.start()
            server.should_exit = True
            await serving
        else:
            await asyncio.gather(*jobs)
    finally:
        await orchestrator.users.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="palaver", description="Calendar assistant chat bot")
    parser.add_argument("-t", "--term", action="store_true", help="chat in this terminal")
    parser.add_argument("-f", "--fb", action="store_true", help="serve Facebook Messenger")
    parser.add_argument("-s", "--slack", action="store_true", help="serve Slack")
    parser.add_argument("-w", "--web", action="store_true", help="serve the web chat endpoints")
    parser.add_argument("--sms", action="store_true", help="serve SMS through Twilio")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    opts = parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not settings.WIT_ACCESS_TOKEN:
        logger.error("missing WIT_ACCESS_TOKEN")
        return 1

    try:
        asyncio.run(run(opts, settings))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
