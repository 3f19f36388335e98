##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
MPI context of a run.

``comm`` is only the default communicator. Meshes, DoF handlers and the
problem driver take an explicit ``comm`` and keep their own reference, so
a single process can drive a serial copy of a distributed problem
(``MPI.COMM_SELF``) next to the distributed one.

Attributes
----------
comm :: mpi4py.MPI.Intracomm
    The default MPI communicator (``COMM_WORLD``).
rank :: int
    The rank of the current process in ``comm``.
size :: int
    The number of processes in ``comm``.
"""

from mpi4py import MPI as _MPI
import sys as _sys


comm = _MPI.COMM_WORLD
size = comm.size
rank = comm.rank


def barrier(communicator=None):
    """All processes of ``communicator`` (default ``comm``) wait here."""
    (communicator or comm).Barrier()


def _should_rank_execute(current_rank, rank_selector, total_size):
    """
    True if ``current_rank`` is picked by ``rank_selector``: an int,
    a sequence of ints, a slice, or ``"all"``.
    """
    if rank_selector == "all":
        return True

    if isinstance(rank_selector, int):
        return current_rank == rank_selector

    if isinstance(rank_selector, slice):
        return current_rank in range(*rank_selector.indices(total_size))

    return current_rank in rank_selector


def pprint(*args, proc=0, comm=None, prefix=None, flush=False, **kwargs):
    """
    ``print`` on selected ranks only, rank 0 by default.

    The console report of a run (mesh, finite element space, DoF counts,
    Newton trace) goes through here so it appears once whatever the
    number of processes.

    Args:
        *args: passed to print()
        proc: rank selector, see :func:`_should_rank_execute`
        comm: communicator that defines the ranks (default: COMM_WORLD)
        prefix: prefix lines with ``[rank]``. ``None`` turns it on when
            several ranks may print.
        flush: flush stdout on every rank
        **kwargs: passed to print() (sep, end, file)

    Example:
        >>> pprint(f"  Number of DoFs = {n_dofs}")
          Number of DoFs = 1331
    """
    communicator = comm or _MPI.COMM_WORLD
    this_rank = communicator.rank
    this_size = communicator.size

    if prefix is None:
        prefix = this_size > 1 and not isinstance(proc, int)

    if _should_rank_execute(this_rank, proc, this_size):
        if prefix:
            print(f"[{this_rank}]", *args, flush=flush, **kwargs)
        else:
            print(*args, flush=flush, **kwargs)
    elif flush:
        _sys.stdout.flush()
