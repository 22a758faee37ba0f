"""
ZJMF Stock Monitor - Main Entry Point
Render Web Service keepalive (FastAPI) or plain worker, both using long polling
"""

import asyncio
import logging
import sys
import signal
from contextlib import asynccontextmanager
from typing import Optional

# FastAPI for keepalive / health check (Render requirement)
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse
import uvicorn

# Telegram Bot
from telegram.ext import Application
from telegram.request import HTTPXRequest

# Local imports
from config import config
from bot import StockMonitorBot

# Configure logging
logging.basicConfig(
    format=config.LOG_FORMAT,
    level=logging.DEBUG if config.DEBUG else getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

# Global variables for bot and telegram application
bot_instance: Optional[StockMonitorBot] = None
telegram_app: Optional[Application] = None


async def start_bot():
    """Build the Telegram application, start polling and the stock check scheduler"""
    global bot_instance, telegram_app

    logger.info("🤖 Initializing Telegram bot...")
    bot_instance = StockMonitorBot()

    # Robust HTTP client (timeouts, no HTTP/2)
    request = HTTPXRequest(
        connect_timeout=20,
        read_timeout=90,
        write_timeout=30,
        pool_timeout=20,
        http_version="1.1",
    )
    telegram_app = (
        Application.builder()
        .token(config.TELEGRAM_TOKEN)
        .request(request)
        .concurrent_updates(True)
        .build()
    )
    bot_instance.setup_handlers(telegram_app)

    await telegram_app.initialize()
    await telegram_app.start()

    # Ensure webhook is disabled before long polling
    try:
        await telegram_app.bot.delete_webhook(drop_pending_updates=False)
    except Exception as e:
        logger.warning(f"Failed to delete webhook before polling: {e}")

    await telegram_app.updater.start_polling(
        allowed_updates=['message', 'callback_query'],
        timeout=30
    )

    logger.info("⏰ Starting stock check scheduler...")
    await bot_instance.start_scheduler()
    logger.info(f"✅ Monitoring {len(config.TARGETS)} targets for {len(config.CHAT_IDS)} chats")


async def stop_bot():
    """Stop accepting new work, let in-flight work finish, then shut down"""
    global bot_instance, telegram_app

    logger.info("🛑 Shutting down bot...")

    if telegram_app and telegram_app.updater and telegram_app.updater.running:
        try:
            await telegram_app.updater.stop()
        except Exception as e:
            logger.warning(f"Error stopping updater: {e}")

    if bot_instance:
        await bot_instance.stop_scheduler()

    if telegram_app:
        if telegram_app.running:
            await telegram_app.stop()
        await telegram_app.shutdown()
        telegram_app = None

    if bot_instance:
        await bot_instance.scraper.close()

    logger.info("👋 Bot stopped.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    logger.info("🚀 Starting ZJMF stock monitor...")
    try:
        await start_bot()
    except Exception as e:
        logger.error(f"❌ Failed to start bot: {e}")
        await stop_bot()
        raise
    try:
        yield  # Application is running
    finally:
        await stop_bot()


# Create FastAPI app for keepalive and health checks
app = FastAPI(
    title="ZJMF Stock Monitor",
    description="Telegram notifications for product stock changes",
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Keepalive endpoint"""
    return "zjmf-monitor running\n"


@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    """Simple liveness probe that always returns 200 OK"""
    return "ok\n"


@app.get("/health")
async def health_check():
    """Detailed health check for monitoring"""
    bot_healthy = bool(telegram_app and telegram_app.running)
    scheduler_healthy = bool(
        bot_instance and bot_instance.scheduler and bot_instance.scheduler.running
    )
    overall_health = bot_healthy and scheduler_healthy

    return JSONResponse(
        status_code=200 if overall_health else 503,
        content={
            "status": "healthy" if overall_health else "unhealthy",
            "components": {
                "telegram_bot": "healthy" if bot_healthy else "unhealthy",
                "scheduler": "healthy" if scheduler_healthy else "unhealthy"
            },
            "environment": config.ENVIRONMENT
        }
    )


@app.get("/stats")
async def get_stats():
    """Get monitor statistics"""
    if not bot_instance:
        raise HTTPException(status_code=503, detail="Bot not initialized")
    return await bot_instance.get_stats()


async def run_worker():
    """Worker mode: no HTTP server, stop on SIGINT/SIGTERM"""
    logger.info("PORT not set; running without HTTP keepalive (worker-style).")
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    await start_bot()
    try:
        await stop_event.wait()
    finally:
        await stop_bot()


def main():
    """Main entry point"""
    logger.info("🎯 ZJMF stock monitor starting...")
    logger.info(f"Environment: {config.ENVIRONMENT}")

    try:
        if config.PORT:
            logger.info(f"HTTP keepalive listening on :{config.PORT}")
            # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown
            uvicorn.run(
                app,
                host="0.0.0.0",
                port=config.PORT,
                log_level=config.LOG_LEVEL.lower()
            )
        else:
            asyncio.run(run_worker())

    except KeyboardInterrupt:
        logger.info("👋 Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error(f"💥 Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
