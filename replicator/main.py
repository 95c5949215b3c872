"""Entry point for the ConfigMap replicator."""

import argparse
import asyncio
import sys
import time
import uuid
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from replicator.config import ReplicatorConfig, parse_namespace_list
from replicator.context import ReplicatorContext
from replicator.dispatcher import EventDispatcher
from replicator.exceptions import ConfigurationError, ReplicatorException
from replicator.routes.health_routes import router as health_router
from replicator.routes.health_routes import set_dispatcher
from replicator.store.base import PartitionStore
from replicator.store.kubernetes import KubernetesPartitionStore

logger = setup_logging('replicator')
setup_logging('common')


def create_app() -> FastAPI:
    app = FastAPI(
        title="ConfigMap Replicator",
        description="Replicates annotated ConfigMaps across namespaces",
        version="1.0.0"
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests and responses.
        """
        request_id = str(uuid.uuid4())
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        logger.debug(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ReplicatorException)
    async def replicator_exception_handler(request: Request, exc: ReplicatorException):
        logger.error(f"Replicator exception: {exc} path={request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc), "code": "INTERNAL_ERROR"}
        )

    @app.get("/")
    async def root():
        """
        Root endpoint for health check.
        """
        return {"message": "ConfigMap Replicator", "status": "running"}

    app.include_router(health_router)
    return app


app = create_app()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="configmap-replicator",
        description="Replicate annotated ConfigMaps across namespaces"
    )
    parser.add_argument(
        "--reconciliation-interval",
        help="configures the reconciliation interval of the controller (default: $REPLICATOR_INTERVAL or 1m)"
    )
    parser.add_argument(
        "--excluded-namespaces",
        help="comma-separated namespaces excluded when a ConfigMap has no excluded-namespaces annotation"
    )
    parser.add_argument(
        "--allowed-namespaces",
        help="comma-separated namespaces targeted when a ConfigMap has no allowed-namespaces annotation"
    )
    parser.add_argument("--max-concurrency", type=int, help="maximum concurrent per-namespace operations")
    parser.add_argument("--status-port", type=int, help="port of the status HTTP server")
    parser.add_argument("--log-level", help="log level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def load_config(argv: Optional[List[str]] = None) -> ReplicatorConfig:
    """
    Build configuration from environment variables overridden by flags.

    Raises:
        ConfigurationError: If any setting is malformed
    """
    args = build_parser().parse_args(argv)

    if args.log_level:
        setup_logging('replicator', log_level=args.log_level)
        setup_logging('common', log_level=args.log_level)

    config = ReplicatorConfig.from_env()
    return config.with_overrides(
        reconciliation_interval=args.reconciliation_interval,
        default_excluded_namespaces=(
            parse_namespace_list(args.excluded_namespaces) if args.excluded_namespaces is not None else None
        ),
        default_allowed_namespaces=(
            parse_namespace_list(args.allowed_namespaces) if args.allowed_namespaces is not None else None
        ),
        max_concurrency=args.max_concurrency,
        status_port=args.status_port,
    )


async def serve(config: ReplicatorConfig, store: PartitionStore) -> None:
    """
    Run the dispatcher alongside the status server until the server exits.
    """
    context = ReplicatorContext(store=store, config=config)
    dispatcher = EventDispatcher(context)
    set_dispatcher(dispatcher)

    server = uvicorn.Server(uvicorn.Config(
        app,
        host=config.status_host,
        port=config.status_port,
        log_level="warning"
    ))

    await dispatcher.start()
    logger.info(f"Status server listening on {config.status_host}:{config.status_port}")

    try:
        await server.serve()
    finally:
        logger.info("Shutting down...")
        await dispatcher.stop()
        await store.close()
        logger.info("Replicator stopped")


def main(argv: Optional[List[str]] = None) -> int:
    """Bootstrap the replicator service."""
    try:
        config = load_config(argv)
        store = KubernetesPartitionStore.from_environment()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger.info(
        f"Starting replicator [interval={config.reconciliation_interval}, "
        f"excluded={list(config.default_excluded_namespaces)}, "
        f"allowed={list(config.default_allowed_namespaces)}, "
        f"max_concurrency={config.max_concurrency}]"
    )

    try:
        asyncio.run(serve(config, store))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    return 0


if __name__ == "__main__":
    sys.exit(main())
