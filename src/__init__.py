"""
Cartograph - structural method index for JavaScript/TypeScript source trees.

Finds the methods relevant to a task and lets them be edited outside their
files, then surgically puts the edited methods back.

Usage:
    from cartograph import CartographEngine

    engine = CartographEngine.for_project("/path/to/project")

    # Build / update the index
    engine.index_all()

    # Find methods
    hits = engine.find_relevant_methods("create orb")

    # Extract, edit methods.js, reinject
    engine.extract(query="create orb")
    result = engine.reinject()
"""

from .config import CartographConfig, load_config
from .engine import CartographEngine
from .models import MethodEntry, MethodIndex, Role, SearchHit, Snapshot

__version__ = "0.3.0"
__all__ = [
    "CartographConfig",
    "CartographEngine",
    "MethodEntry",
    "MethodIndex",
    "Role",
    "SearchHit",
    "Snapshot",
    "load_config",
]
