"""
The ``python -m fisher_kolmogorov`` driver.
"""

import shutil

import numpy as np
import pytest
from petsc4py import PETSc

import fisher_kolmogorov as fk
from fisher_kolmogorov.__main__ import _parse_center, insert_options, main, seed_initial_condition
from fisher_kolmogorov.errors import ConfigError

pytestmark = pytest.mark.level_2


@pytest.fixture
def run_main():
    """Call ``main`` and remove its options from the global database afterwards."""
    inserted = []

    def _run(argv):
        inserted.extend(a for a in argv if a.startswith("-fk_"))
        return main(argv)

    yield _run

    opts = PETSc.Options()
    for name in inserted:
        opts.delValue(name)


@pytest.fixture(scope="module")
def mesh_file(tmp_path_factory):
    filename = str(tmp_path_factory.mktemp("mesh") / "cube.msh")
    fk.meshing.UnstructuredSimplexBox(cellSize=0.5, filename=filename)
    return filename


def test_seed_initial_condition():
    u0 = seed_initial_condition((0.5, 0.5, 0.5), radius=0.1, amplitude=0.2)

    assert np.isclose(u0.value(np.array([0.5, 0.5, 0.5])), 0.2)
    assert np.isclose(u0.value(np.array([0.6, 0.5, 0.5])), 0.2 * np.exp(-0.5))


def test_parse_center():
    assert np.allclose(_parse_center("0.1,0.2,0.3"), [0.1, 0.2, 0.3])
    assert np.allclose(_parse_center("1 2 3"), [1.0, 2.0, 3.0])

    with pytest.raises(ConfigError):
        _parse_center("1,2")


def test_run(run_main, mesh_file, tmp_path, capsys):
    out = tmp_path / "out"
    status = run_main(
        [
            "-fk_mesh_file", mesh_file,
            "-fk_T", "0.2",
            "-fk_deltat", "0.1",
            "-fk_alpha", "1.0",
            "-fk_directory", str(out),
        ]
    )

    assert status == 0
    assert len(list(out.glob("*.pvtu"))) == 3

    text = capsys.readouterr().out
    assert "Initializing the mesh" in text
    assert "n =   2, t = 0.200000" in text


def test_missing_mesh_file(run_main, tmp_path, capsys):
    status = run_main(["-fk_mesh_file", str(tmp_path / "missing.msh"), "-fk_enabled", "false"])

    assert status == 1
    assert "Error" in capsys.readouterr().err


def test_invalid_parameter(run_main, mesh_file, capsys):
    status = run_main(["-fk_mesh_file", mesh_file, "-fk_deltat", "-1.0", "-fk_enabled", "false"])

    assert status == 1
    assert "deltat" in capsys.readouterr().err


def test_parameter_file(run_main, mesh_file, tmp_path):
    params = tmp_path / "params.yaml"
    params.write_text(
        "Mesh & geometry:\n"
        f"  Mesh file: {mesh_file}\n"
        "Time stepping:\n"
        "  T: 0.1\n"
        "  deltat: 0.1\n"
        "Output:\n"
        f"  Directory: {tmp_path / 'run'}\n"
    )

    assert run_main(["-fk_params", str(params), "-fk_seed_center", "0.2,0.2,0.2"]) == 0
    assert len(list((tmp_path / "run").glob("*.pvtu"))) == 2


def test_insert_options_keeps_spaces_and_negatives():
    names = ["-fk_test_path", "-fk_test_shift", "-fk_test_flag"]
    try:
        insert_options(["-fk_test_path", "a dir/with spaces.msh", "-fk_test_shift", "-2.5", "-fk_test_flag"])

        opts = PETSc.Options()
        assert opts.getString("fk_test_path") == "a dir/with spaces.msh"
        assert opts.getReal("fk_test_shift") == -2.5
        assert opts.getBool("fk_test_flag") is True
    finally:
        opts = PETSc.Options()
        for name in names:
            opts.delValue(name)


def test_insert_options_rejects_stray_values():
    with pytest.raises(ConfigError):
        insert_options(["stray"])


def test_mesh_path_with_spaces(run_main, mesh_file, tmp_path):
    spaced = tmp_path / "mesh dir" / "my cube.msh"
    spaced.parent.mkdir()
    shutil.copy(mesh_file, spaced)

    status = run_main(
        ["-fk_mesh_file", str(spaced), "-fk_T", "0.1", "-fk_deltat", "0.1", "-fk_enabled", "false"]
    )

    assert status == 0
