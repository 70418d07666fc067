"""
Pipeline module for the Dealsuite sync.

Submodules:
    models: PipelineStatus, RunUsage and PipelineResult.
    coordinator: Stage wiring and the run state machine.
    responses: Invocation request parsing and response payloads.
"""

from .models import PipelineStatus, PipelineResult, RunUsage
from .coordinator import PipelineCoordinator, build_coordinator
from .responses import InvocationRequest, InvalidRequest, to_response, error_response, handle_invocation
