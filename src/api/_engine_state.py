"""
Engine state management for API integration.

Provides singleton access to the EngineService instance.
Initialized during FastAPI lifespan, NOT auto-started.

Usage:
    from ._engine_state import get_engine_service, init_engine_service

    # In lifespan:
    init_engine_service(db_path)

    # In routers:
    service = get_engine_service()
"""

from pathlib import Path
from typing import Optional

from src.engine.service import EngineService


# Global engine service instance
_engine_service: Optional[EngineService] = None


def init_engine_service(
    db_path: str | Path,
    poll_interval: float = 1.0,
) -> EngineService:
    """
    Initialize the engine service singleton.

    Does NOT start the scheduler; explicit /scheduler/start required.
    """
    global _engine_service

    if _engine_service is not None:
        return _engine_service

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    _engine_service = EngineService.create(db_path=db_path, poll_interval=poll_interval)
    return _engine_service


def set_engine_service(service: Optional[EngineService]) -> None:
    """Install a pre-built service (tests) or clear the singleton."""
    global _engine_service
    _engine_service = service


def get_engine_service() -> EngineService:
    """
    Get the engine service singleton.

    Raises:
        RuntimeError: If the engine service is not initialized
    """
    if _engine_service is None:
        raise RuntimeError(
            "Engine service not initialized. "
            "Ensure init_engine_service() is called during startup."
        )

    return _engine_service


def shutdown_engine_service() -> None:
    """Stop the scheduler if running and drop the singleton."""
    global _engine_service

    if _engine_service is not None:
        if _engine_service.is_running:
            _engine_service.stop()

        _engine_service = None
