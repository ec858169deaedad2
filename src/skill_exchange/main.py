"""CLI entrypoint for skill-exchange."""

from __future__ import annotations

import typer
import uvicorn

app = typer.Typer(name="skill-exchange", help="Skill exchange session workflow service", invoke_without_command=True)


@app.callback(invoke_without_command=True)
def start(
    port: int = typer.Option(3000, help="Server port"),
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    config: str | None = typer.Option(None, "--config", help="Path to a config.yaml (default: ./.skill-exchange/config.yaml)"),
) -> None:
    """Start the Skill Exchange server."""
    import os
    import threading

    from skill_exchange.server import create_app

    try:
        fastapi_app = create_app(config_path=config)
    except ValueError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Starting Skill Exchange on http://{host}:{port}")

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s %(levelprefix)s %(message)s"
    log_config["formatters"]["default"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s %(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s'
    log_config["formatters"]["access"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
    log_config["loggers"]["skill_exchange"] = {"handlers": ["default"], "level": "INFO", "propagate": False}

    server_config = uvicorn.Config(
        fastapi_app,
        host=host,
        port=port,
        log_level="info",
        log_config=log_config,
        timeout_graceful_shutdown=1,
    )
    server = uvicorn.Server(server_config)

    # On Ctrl+C, close SSE streams before uvicorn drains connections and
    # arm a force-exit timer so shutdown cannot hang.
    _orig_handle_exit = server.handle_exit
    _force_timer: threading.Timer | None = None

    def _handle_exit(sig: int, frame: object) -> None:
        nonlocal _force_timer
        fastapi_app.state.controller.broker.disconnect_all()
        if _force_timer is None:
            _force_timer = threading.Timer(5.0, lambda: os._exit(1))
            _force_timer.daemon = True
            _force_timer.start()
        _orig_handle_exit(sig, frame)

    server.handle_exit = _handle_exit  # type: ignore[assignment]
    server.run()


if __name__ == "__main__":
    app()
