"""Dependencies package for the process runner API."""

from .services import (
    get_process_registry,
    get_session_store,
    get_run_orchestrator,
    get_stop_orchestrator,
    reset_services,
    ProcessRegistryDep,
    SessionStoreDep,
    RunOrchestratorDep,
    StopOrchestratorDep,
)

__all__ = [
    "get_process_registry",
    "get_session_store",
    "get_run_orchestrator",
    "get_stop_orchestrator",
    "reset_services",
    "ProcessRegistryDep",
    "SessionStoreDep",
    "RunOrchestratorDep",
    "StopOrchestratorDep",
]
