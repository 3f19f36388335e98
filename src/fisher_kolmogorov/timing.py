##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Timing through PETSc's logging.

Routines decorated with :func:`routine_timer_decorator` become PETSc log
events, so ``-log_view`` (or :func:`print_table`) reports setup, assembly,
the CG and Newton solves and output next to the MatMult, KSPSolve and
VecNorm events they drive.

>>> import fisher_kolmogorov as fk
>>> fk.timing.start()
>>> problem.solve()
>>> fk.timing.print_table()
"""

import functools as _functools
from mpi4py import MPI

RANK = MPI.COMM_WORLD.rank

# Events are registered once per routine
_petsc_events = {}


def start():
    """Turn on PETSc performance logging; later calls do nothing."""
    from petsc4py import PETSc

    if not PETSc.Log.isActive():
        PETSc.Log.begin()


def print_table(filename=None):
    """
    PETSc performance summary, to the console or to ``filename``
    (comma separated when it ends in ``.csv``). Collective.
    """
    from petsc4py import PETSc

    if not PETSc.Log.isActive():
        if RANK == 0:
            print("PETSc logging not enabled. Call timing.start() first.")
        return

    if filename is None:
        PETSc.Log.view()
        return

    viewer = PETSc.Viewer().createASCII(filename, "w")
    if filename.endswith(".csv"):
        viewer.pushFormat(PETSc.Viewer.Format.ASCII_CSV)
    PETSc.Log.view(viewer)
    viewer.destroy()

    if RANK == 0:
        print(f"Timing results saved to {filename}")


def routine_timer_decorator(routine):
    """
    Wrap ``routine`` in a PETSc log event named after its qualified name,
    e.g. ``Assembler.assemble_system`` or ``NewtonSolver.solve``.
    """
    from petsc4py import PETSc

    event_name = routine.__qualname__
    if event_name not in _petsc_events:
        _petsc_events[event_name] = PETSc.Log.Event(event_name)

    event = _petsc_events[event_name]

    @_functools.wraps(routine)
    def timed(*args, **kwargs):
        event.begin()
        try:
            return routine(*args, **kwargs)
        finally:
            event.end()

    return timed


def registered_events():
    """Names of the events registered through the decorator so far."""
    return sorted(_petsc_events)
