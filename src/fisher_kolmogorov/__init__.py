from petsc4py import PETSc

# pop the default petsc Signal handler to let petsc errors appear in python
PETSc.Sys.popErrorHandler()

from ._version import __version__

import fisher_kolmogorov.mpi
import fisher_kolmogorov.timing
import fisher_kolmogorov.errors
import fisher_kolmogorov.config
import fisher_kolmogorov.coefficients
import fisher_kolmogorov.discretisation
import fisher_kolmogorov.meshing
import fisher_kolmogorov.linear_system
import fisher_kolmogorov.assembly
import fisher_kolmogorov.solvers
import fisher_kolmogorov.norms
import fisher_kolmogorov.output
import fisher_kolmogorov.model

from .config import FisherKolmogorovConfig, load_config
from .discretisation import DoFHandler, LagrangeSimplex, Mesh
from .model import FisherKolmogorov3D
from .norms import ErrorNorm, NormType


## Add an options dictionary for arbitrary fisher_kolmogorov things

options = PETSc.Options("fk_")


def require_dirs(ListOfDirs):
    """
    List of directories required by this run
    """
    import os

    for dir in ListOfDirs:
        os.makedirs(dir, exist_ok=True)
