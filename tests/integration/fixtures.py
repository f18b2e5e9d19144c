"""Ephemeral container fixtures for integration tests."""

from __future__ import annotations

import os
import socket
import subprocess
import time
from collections.abc import Iterator
from dataclasses import dataclass
from urllib.parse import quote_plus

import pytest
from sqlalchemy import create_engine

from packages.governance_core.migrations import run_startup_migrations
from packages.governance_shared.config import GovernanceSettings, load_settings
from resources.substrates.postgres.config import resolve_postgres_settings
from tests.integration.helpers import real_provider_tests_enabled

_POSTGRES_IMAGE = os.getenv("GOVERNANCE_INTEGRATION_POSTGRES_IMAGE", "postgres:16")
_POSTGRES_URL_ENV = "GOVERNANCE_COMPONENTS__SUBSTRATE__POSTGRES__URL"


@dataclass(frozen=True, slots=True)
class RunningContainer:
    """Lightweight handle for a running temporary Docker container."""

    container_id: str
    host: str
    port: int


def _run_command(*args: str) -> subprocess.CompletedProcess[str]:
    """Execute one command and return captured stdout/stderr."""
    return subprocess.run(
        args,
        check=True,
        capture_output=True,
        text=True,
    )


def _docker_available() -> bool:
    """Return True when docker CLI is callable in the current environment."""
    try:
        _run_command("docker", "version")
    except (FileNotFoundError, subprocess.CalledProcessError):
        return False
    return True


def _parse_published_port(port_output: str) -> tuple[str, int]:
    """Parse ``docker port`` output into host and integer port."""
    line = port_output.strip().splitlines()[0].strip()
    host, port = line.rsplit(":", maxsplit=1)
    return host, int(port)


def _wait_for_tcp(host: str, port: int, *, timeout_seconds: float = 30.0) -> None:
    """Wait until one TCP endpoint accepts a connection or time out."""
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                return
        except OSError:
            time.sleep(0.2)
    raise TimeoutError(f"timed out waiting for TCP endpoint {host}:{port}")


def _wait_for_postgres_ready(
    *,
    container_id: str,
    dsn: str,
    username: str,
    database: str,
    timeout_seconds: float = 60.0,
) -> None:
    """Wait until Postgres accepts stable SQL connections."""
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        result = subprocess.run(
            ("docker", "exec", container_id, "pg_isready", "-U", username, "-d", database),
            check=False,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            time.sleep(0.2)
            continue

        # pg_isready can pass before host-side connections are stable.
        try:
            engine = create_engine(dsn, pool_pre_ping=True)
            try:
                with engine.connect() as conn:
                    conn.exec_driver_sql("SELECT 1")
            finally:
                engine.dispose()
            return
        except Exception:  # noqa: BLE001
            time.sleep(0.2)
    raise TimeoutError("timed out waiting for Postgres readiness")


def _start_container(
    *,
    image: str,
    container_port: int,
    env: dict[str, str] | None = None,
) -> RunningContainer:
    """Start one detached ``docker run`` container and return mapped endpoint."""
    env_args: list[str] = []
    for key, value in (env or {}).items():
        env_args.extend(["--env", f"{key}={value}"])
    run_result = _run_command(
        "docker",
        "run",
        "--detach",
        "--rm",
        "--publish",
        f"127.0.0.1::{container_port}",
        *env_args,
        image,
    )
    container_id = run_result.stdout.strip()
    port_result = _run_command("docker", "port", container_id, f"{container_port}/tcp")
    host, port = _parse_published_port(port_result.stdout)
    _wait_for_tcp(host, port)
    return RunningContainer(container_id=container_id, host=host, port=port)


def _stop_container(container_id: str) -> None:
    """Stop one running container and ignore teardown-time failures."""
    subprocess.run(
        ("docker", "stop", container_id),
        check=False,
        capture_output=True,
        text=True,
    )


@pytest.fixture(scope="session")
def postgres_dsn() -> Iterator[str]:
    """Yield one temporary Postgres DSN for integration tests."""
    if not real_provider_tests_enabled():
        pytest.skip("real-provider integration tests disabled")
    if not _docker_available():
        pytest.skip("docker unavailable for integration tests")
    credentials = {
        "POSTGRES_USER": "governance",
        "POSTGRES_PASSWORD": "governance",
        "POSTGRES_DB": "governance",
    }
    container = _start_container(
        image=_POSTGRES_IMAGE,
        container_port=5432,
        env=credentials,
    )
    password = quote_plus(credentials["POSTGRES_PASSWORD"])
    dsn = (
        f"postgresql+psycopg://governance:{password}"
        f"@{container.host}:{container.port}/governance"
    )
    _wait_for_postgres_ready(
        container_id=container.container_id,
        dsn=dsn,
        username="governance",
        database="governance",
    )
    try:
        yield dsn
    finally:
        _stop_container(container.container_id)


@pytest.fixture(scope="session")
def integration_settings(postgres_dsn: str) -> GovernanceSettings:
    """Return settings bound to the temporary Postgres container."""
    return load_settings(
        environ={_POSTGRES_URL_ENV: postgres_dsn},
        config_path="/nonexistent/governance.yaml",
    )


@pytest.fixture(scope="session")
def migrated_integration_settings(
    integration_settings: GovernanceSettings,
) -> GovernanceSettings:
    """Run service migrations against temporary Postgres and return settings."""
    postgres_url = resolve_postgres_settings(integration_settings).resolved_url
    if postgres_url == "":
        raise RuntimeError("temporary integration Postgres URL is required")

    # Alembic env modules load settings from the process environment.
    previous = os.environ.get(_POSTGRES_URL_ENV)
    os.environ[_POSTGRES_URL_ENV] = postgres_url
    try:
        run_startup_migrations(settings=integration_settings)
    finally:
        if previous is None:
            os.environ.pop(_POSTGRES_URL_ENV, None)
        else:
            os.environ[_POSTGRES_URL_ENV] = previous
    return integration_settings
