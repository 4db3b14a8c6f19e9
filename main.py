"""Main entry point for the portal tracker."""

import asyncio
import json
import logging
import sys

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from portal_tracker import __version__
from portal_tracker.config import get_config
from portal_tracker.scheduler import TrackerService
from portal_tracker.sink import create_sink


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)

# Global service instance
service: TrackerService = None
app = FastAPI(title="Portal Tracker", version=__version__)


@app.on_event("startup")
async def startup_event():
    """Start the tracker on startup."""
    global service
    config = get_config()
    configure_logging(config.log_level)
    service = TrackerService(config)
    await service.start()
    logger.info("Portal tracker started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    global service
    if service:
        await service.stop()
    logger.info("Portal tracker stopped")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "healthy", "service": "portal-tracker"}


@app.get("/status")
async def get_status():
    """Get tracker status."""
    if not service:
        return JSONResponse(content={"error": "System not initialized"}, status_code=503)

    return service.get_status()


async def run_cli_command(command: str, *args):
    """Run CLI commands."""
    config = get_config()
    configure_logging(config.log_level)

    if command == "run":
        tracker = TrackerService(config)
        await tracker.start()
        try:
            await tracker.wait()
        finally:
            await tracker.stop()

    elif command == "scan":
        tracker = TrackerService(config)
        try:
            counts = await tracker.loop.run_one_off_scan()
            print(json.dumps(counts, indent=2, sort_keys=True))
        finally:
            await tracker.session.close()
            await tracker.sink.aclose()

    elif command == "command":
        if not args:
            print("Usage: python main.py command start|stop|refresh|clearLogs [agent ...]")
            return
        payload = {"action": args[0]}
        if args[1:]:
            payload["payload"] = list(args[1:])
        sink = create_sink(config)
        try:
            await sink.send_command(payload)
            print(f"Sent command: {json.dumps(payload)}")
        finally:
            await sink.aclose()

    else:
        print(f"Unknown command: {command}")
        print("Available commands: run, scan, command <action> [agent ...]")


def main():
    """Main entry point with argument handling."""
    if len(sys.argv) < 2:
        # No arguments - start web server
        config = get_config()
        configure_logging(config.log_level)
        logger.info("Starting portal tracker web server")
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=8000,
            reload=False,
            log_level="info"
        )
    else:
        # CLI mode
        command = sys.argv[1]
        args = sys.argv[2:]
        try:
            asyncio.run(run_cli_command(command, *args))
        except KeyboardInterrupt:
            logger.info("Interrupted")


if __name__ == "__main__":
    main()
