from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

import click
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from relay_core import logging as core_logging
from relay_core.config import RelayConfig, load_relay_config, parse_server_port
from relay_core.errors import ConfigError, TypedRelayError, typed_error_payload
from relay_hub.api.routes import register_relay_routes
from relay_hub.domains import EVENT_TYPE_MESSAGE, TurnOrchestrator
from relay_hub.integrations import SessionBridge, TurnExecutor
from relay_hub.runtime import SubscriberRegistry
from relay_hub.services.chat_service import ChatService
from relay_hub.services.event_service import EventService
from relay_hub.store import ConversationStore


CONFIG_FILE_NAME = "relay.config.toml"
HUB_LOG_LEVEL_CHOICES = ("critical", "error", "warning", "info", "debug")

LOGGER = logging.getLogger("relay_hub")
LOGGER.addHandler(logging.NullHandler())


def _repo_root() -> Path:
    resolved = Path(__file__).resolve()
    for parent in resolved.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    return resolved.parent


def _default_config_file() -> Path:
    return _repo_root() / "config" / CONFIG_FILE_NAME


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _normalize_log_level(value: Any) -> str:
    normalized = str(value or "").strip().lower()
    if normalized in HUB_LOG_LEVEL_CHOICES:
        return normalized
    return "info"


def _uvicorn_log_level(hub_level: str) -> str:
    normalized = _normalize_log_level(hub_level)
    if normalized == "debug":
        return "info"
    return normalized


def _configure_hub_logging(level: str) -> None:
    normalized = _normalize_log_level(level)
    core_logging.configure_structured_logger(LOGGER, level=normalized)


def _resolve_hub_log_level(log_level: str | None, config: RelayConfig | None) -> str:
    cli_value = str(log_level or "").strip()
    if cli_value:
        return _normalize_log_level(cli_value)

    config_value = ""
    if config is not None and isinstance(config.logging.values, dict):
        config_value = str(config.logging.values.get("level") or "").strip()
    if config_value:
        return _normalize_log_level(config_value)
    return _normalize_log_level("info")


def _configure_domain_log_levels(config: RelayConfig | None) -> None:
    if config is None or not isinstance(config.logging.values, dict):
        return
    core_logging.configure_domain_log_levels(
        domains=config.logging.values.get("domains"),
        logger_prefix="relay_hub",
        normalize_level=_normalize_log_level,
    )


def _core_error_payload(exc: BaseException) -> tuple[int, dict[str, Any]]:
    typed_payload = typed_error_payload(exc)
    if typed_payload is not None:
        status_by_code = {
            "CONFIG_ERROR": 400,
            "INVALID_INPUT": 400,
            "NOT_FOUND": 404,
            "PROCESS_FAILURE": 502,
            "TIMEOUT": 504,
        }
        status = status_by_code.get(str(typed_payload.get("error_code") or ""), 500)
        return status, typed_payload
    return 500, {"error_code": "INTERNAL_ERROR", "detail": str(exc)}


def _http_error_code(status_code: int) -> str:
    status = int(status_code or 500)
    if status == 400:
        return "BAD_REQUEST"
    if status == 404:
        return "NOT_FOUND"
    if status == 405:
        return "METHOD_NOT_ALLOWED"
    if status == 422:
        return "UNPROCESSABLE_ENTITY"
    if status in {500, 502, 503, 504}:
        return "UPSTREAM_ERROR"
    return f"HTTP_{status}"


class RelayState:
    """Explicitly constructed set of relay components shared by every route."""

    def __init__(
        self,
        *,
        config: RelayConfig | None = None,
        executor: TurnExecutor | None = None,
        store: ConversationStore | None = None,
        registry: SubscriberRegistry | None = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.store = store or ConversationStore()
        self.registry = registry or SubscriberRegistry()
        self.executor = executor or SessionBridge.from_config(self.config.assistant)
        self.turn_pool = ThreadPoolExecutor(
            max_workers=self.config.assistant.turn_workers,
            thread_name_prefix="relay-turn",
        )
        self.turns = TurnOrchestrator(store=self.store, executor=self.executor, registry=self.registry)
        self.chat_service = ChatService(domain=self.turns)
        self.event_service = EventService(registry=self.registry)

    def shutdown(self) -> None:
        self.registry.clear_all()
        self.turn_pool.shutdown(wait=False, cancel_futures=True)


def create_app(state: RelayState) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        state.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.relay_state = state

    @app.exception_handler(TypedRelayError)
    async def _handle_typed_relay_error(_request: Request, exc: TypedRelayError) -> JSONResponse:
        status, payload = _core_error_payload(exc)
        return JSONResponse(status_code=status, content=payload)

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=int(exc.status_code or 500),
            content={"error_code": _http_error_code(int(exc.status_code or 500)), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _handle_unexpected_error(_request: Request, exc: Exception) -> JSONResponse:
        LOGGER.error(
            "Unhandled relay error: %s",
            exc,
            exc_info=exc,
            extra=core_logging.log_fields(component="api", result="failed", error_class=type(exc).__name__),
        )
        status, payload = _core_error_payload(exc)
        return JSONResponse(status_code=status, content=payload)

    register_relay_routes(
        app,
        state=state,
        logger=LOGGER,
        iso_now=_iso_now,
        event_type_message=EVENT_TYPE_MESSAGE,
    )
    return app


def _apply_cli_overrides(
    config: RelayConfig,
    *,
    claude_path: str | None,
    claude_model: str | None,
    port: int | None,
    auth_token: str | None,
) -> RelayConfig:
    assistant = config.assistant
    if str(claude_path or "").strip():
        assistant = replace(assistant, executable=str(claude_path).strip())
    if str(claude_model or "").strip():
        assistant = replace(assistant, model=str(claude_model).strip())
    server = config.server
    if port is not None:
        server = replace(server, port=parse_server_port(port, label="--port"))
    auth = config.auth
    if str(auth_token or "").strip():
        auth = replace(auth, token=str(auth_token).strip())
    return replace(config, assistant=assistant, server=server, auth=auth)


@click.command(help="Run the chat relay hub.")
@click.option(
    "--config-file",
    default=str(_default_config_file()),
    show_default=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Relay config file.",
)
@click.option("--host", default=None, show_default="config server.host")
@click.option("--port", default=None, type=int, envvar="GATEWAY_PORT", show_default="config server.port")
@click.option("--claude-path", default=None, envvar="CLAUDE_PATH", help="Assistant CLI executable.")
@click.option("--claude-model", default=None, envvar="CLAUDE_MODEL", help="Assistant model selector.")
@click.option("--auth-token", default=None, envvar="AUTH_TOKEN", help="Shared secret for the auth layer.")
@click.option(
    "--log-level",
    default=None,
    envvar="LOG_LEVEL",
    show_default="config logging.level or info",
    type=click.Choice(HUB_LOG_LEVEL_CHOICES, case_sensitive=False),
    help="Relay logging verbosity (applies to relay logs and Uvicorn).",
)
def main(
    config_file: Path,
    host: str | None,
    port: int | None,
    claude_path: str | None,
    claude_model: str | None,
    auth_token: str | None,
    log_level: str | None,
) -> None:
    try:
        config = _apply_cli_overrides(
            load_relay_config(config_file),
            claude_path=claude_path,
            claude_model=claude_model,
            port=port,
            auth_token=auth_token,
        )
    except ConfigError as exc:
        click.echo(
            json.dumps(
                {
                    "event": "relay_hub_config_load_error",
                    "config_path": str(config_file),
                    "error": str(exc),
                },
                sort_keys=True,
            ),
            err=True,
        )
        raise click.ClickException(str(exc)) from exc

    normalized_log_level = _resolve_hub_log_level(log_level, config)
    _configure_hub_logging(normalized_log_level)
    _configure_domain_log_levels(config)
    resolved_host = str(host or "").strip() or config.server.host
    LOGGER.info(
        "Starting relay hub host=%s port=%s log_level=%s assistant=%s",
        resolved_host,
        config.server.port,
        normalized_log_level,
        config.assistant.executable,
        extra=core_logging.log_fields(component="startup", operation="hub_start", result="started"),
    )

    app = create_app(RelayState(config=config))
    uvicorn.run(
        app,
        host=resolved_host,
        port=config.server.port,
        log_level=_uvicorn_log_level(normalized_log_level),
    )


if __name__ == "__main__":
    main()
