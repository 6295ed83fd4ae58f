"""
Build-from-source collaborators: revision checkout and compilation.
"""

from provenance.build.project import BuildProvider, ProjectBuilder, SourceRef
from provenance.build.toolchains import FoundryToolchain, HardhatToolchain, Toolchain
from provenance.build.tools import Toolbox

__all__ = [
    "BuildProvider",
    "FoundryToolchain",
    "HardhatToolchain",
    "ProjectBuilder",
    "SourceRef",
    "Toolbox",
    "Toolchain",
]
