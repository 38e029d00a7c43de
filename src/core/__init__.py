"""
Bootstrap core
Environment resolution, artifact caching, process supervision and the
sequence that ties them together before delegating to the primary app
"""
from .bootstrap import Bootstrapper, BootstrapOutcome, BootstrapStage, BootstrapState
from .environment import resolve
from .artifacts import ArtifactCache, ArtifactDescriptor, ArchitectureTarget
from .supervisor import ProcessSupervisor, SupervisedProcess

__all__ = [
    "Bootstrapper",
    "BootstrapOutcome",
    "BootstrapStage",
    "BootstrapState",
    "resolve",
    "ArtifactCache",
    "ArtifactDescriptor",
    "ArchitectureTarget",
    "ProcessSupervisor",
    "SupervisedProcess",
]
