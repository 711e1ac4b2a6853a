"""Service dependency injection for the process runner API.

The registry and session store are created once per application process
and handed to both orchestrators through their constructors.
"""

# Standard library imports
from functools import lru_cache
from typing import Annotated

# Third-party imports
from fastapi import Depends
import structlog

# Local application imports
from ..config import settings
from ..services import (
    ProcessRegistry,
    RunOrchestrator,
    SessionStore,
    StopOrchestrator,
)
from ..services.sandbox import NsjailConfig

logger = structlog.get_logger(__name__)


@lru_cache()
def get_process_registry() -> ProcessRegistry:
    """Get the process registry instance."""
    return ProcessRegistry(kill_process_group=settings.kill_process_group)


@lru_cache()
def get_session_store() -> SessionStore:
    """Get the session store instance."""
    return SessionStore()


@lru_cache()
def get_run_orchestrator() -> RunOrchestrator:
    """Get the run orchestrator wired to the shared registry and sessions."""
    orchestrator = RunOrchestrator(
        registry=get_process_registry(),
        sessions=get_session_store(),
        nsjail_config=NsjailConfig(settings.sandbox),
        stderr_css_class=settings.stderr_css_class,
    )
    logger.info(
        "Run orchestrator initialized", sandbox_enabled=settings.sandbox_enabled
    )
    return orchestrator


@lru_cache()
def get_stop_orchestrator() -> StopOrchestrator:
    """Get the stop orchestrator wired to the shared registry and sessions."""
    return StopOrchestrator(
        registry=get_process_registry(),
        sessions=get_session_store(),
    )


def reset_services() -> None:
    """Drop cached instances so the next getter call builds fresh ones."""
    get_run_orchestrator.cache_clear()
    get_stop_orchestrator.cache_clear()
    get_session_store.cache_clear()
    get_process_registry.cache_clear()


# Type aliases for dependency injection
ProcessRegistryDep = Annotated[ProcessRegistry, Depends(get_process_registry)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
RunOrchestratorDep = Annotated[RunOrchestrator, Depends(get_run_orchestrator)]
StopOrchestratorDep = Annotated[StopOrchestrator, Depends(get_stop_orchestrator)]
