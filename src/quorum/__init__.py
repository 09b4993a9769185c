from quorum.analyzer import AnalysisResult, analyze_task
from quorum.config import ConfigError, QuorumConfig, load_config, save_config
from quorum.consensus import ConsensusResult, evaluate_consensus
from quorum.directives import Directive, next_directive
from quorum.expertise import ExpertiseMatch, classify_task
from quorum.lifecycle import LifecycleEngine, UnknownProposalError, transition
from quorum.models import Decision, Proposal, Review, VoteRecord
from quorum.roles import RoleAssignment, assign_roles, select_arbiter

__version__ = "0.1.0"

__all__ = [
    "AnalysisResult",
    "ConfigError",
    "ConsensusResult",
    "Decision",
    "Directive",
    "ExpertiseMatch",
    "LifecycleEngine",
    "Proposal",
    "QuorumConfig",
    "Review",
    "RoleAssignment",
    "UnknownProposalError",
    "VoteRecord",
    "__version__",
    "analyze_task",
    "assign_roles",
    "classify_task",
    "evaluate_consensus",
    "load_config",
    "next_directive",
    "save_config",
    "select_arbiter",
    "transition",
]
