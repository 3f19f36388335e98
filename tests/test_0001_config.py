"""
Parameter file handling: defaults, aliases, validation, YAML round trip
and command line overrides.
"""

import pytest
from petsc4py import PETSc

from fisher_kolmogorov.config import FisherKolmogorovConfig, apply_options, load_config
from fisher_kolmogorov.errors import ConfigError

pytestmark = pytest.mark.level_1


PARAMETER_FILE = """
Mesh & geometry parameters:
  Mesh file: ../mesh/brain-h3.0.msh
  Degree: 2
Physical constants:
  Dext: 1.5
  Daxn: 8.0
  Alpha coefficient: 0.3
Time stepping parameters:
  T: 2.0
  deltat: 0.05
  Theta: 1.0
Solver parameters:
  Max Newton iterations: 50
  Newton tolerance: 1.0e-8
  Max CG iterations: 500
  CG tolerance factor: 1.0e-4
"""


def test_defaults():
    config = FisherKolmogorovConfig()

    assert config.mesh.mesh_file is None
    assert config.mesh.degree == 1
    assert config.physics.d_ext == 1.0
    assert config.physics.d_axn == 10.0
    assert config.physics.alpha == 0.1
    assert config.time_stepping.T == 1.0
    assert config.time_stepping.deltat == 0.1
    assert config.time_stepping.theta == 1.0
    assert config.solver.max_newton_iterations == 1000
    assert config.solver.newton_tolerance == 1e-6
    assert config.solver.max_cg_iterations == 1000
    assert config.solver.cg_tolerance_factor == 1e-6
    assert config.solver.abort_on_newton_failure is False
    assert config.output.enabled is True


def test_parameter_file_names():
    config = FisherKolmogorovConfig.from_yaml(PARAMETER_FILE)

    assert config.mesh.mesh_file == "../mesh/brain-h3.0.msh"
    assert config.mesh.degree == 2
    assert config.physics.alpha == 0.3
    assert config.time_stepping.deltat == 0.05
    assert config.solver.max_newton_iterations == 50
    assert config.solver.cg_tolerance_factor == 1e-4


def test_attribute_names_accepted():
    config = FisherKolmogorovConfig.from_dict(
        {"physics": {"alpha": 0.7}, "time_stepping": {"deltat": 0.2}}
    )

    assert config.physics.alpha == 0.7
    assert config.time_stepping.deltat == 0.2


@pytest.mark.parametrize(
    "data",
    [
        {"Mesh & geometry": {"Degree": 0}},
        {"Physical constants": {"Dext": -1.0}},
        {"Time stepping": {"deltat": 0.0}},
        {"Time stepping": {"Theta": 1.5}},
        {"Solver": {"Max CG iterations": 0}},
        {"Solver": {"Unknown key": 1}},
        {"Unknown section": {}},
    ],
)
def test_invalid_parameters(data):
    with pytest.raises(ConfigError):
        FisherKolmogorovConfig.from_dict(data)


def test_invalid_yaml():
    with pytest.raises(ConfigError):
        FisherKolmogorovConfig.from_yaml("Solver: [unclosed")

    with pytest.raises(ConfigError):
        FisherKolmogorovConfig.from_yaml("- just\n- a list\n")


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "does_not_exist.yaml"))


def test_yaml_round_trip(tmp_path):
    config = FisherKolmogorovConfig.from_yaml(PARAMETER_FILE)

    path = tmp_path / "params.yaml"
    text = config.to_yaml(str(path))

    assert "Mesh & geometry" in text
    assert "Alpha" in text

    reloaded = load_config(str(path))
    assert reloaded == config


def test_command_line_overrides():
    options = PETSc.Options("fktest_")
    options["deltat"] = 0.025
    options["degree"] = 3
    options["mesh_file"] = "override.msh"
    options["abort_on_newton_failure"] = True

    try:
        config = apply_options(FisherKolmogorovConfig.from_yaml(PARAMETER_FILE), options)
    finally:
        for name in ("deltat", "degree", "mesh_file", "abort_on_newton_failure"):
            options.delValue(name)

    assert config.time_stepping.deltat == 0.025
    assert config.mesh.degree == 3
    assert config.mesh.mesh_file == "override.msh"
    assert config.solver.abort_on_newton_failure is True

    # Untouched values survive
    assert config.physics.alpha == 0.3


def test_command_line_override_validated():
    options = PETSc.Options("fktest_")
    options["deltat"] = -1.0

    try:
        with pytest.raises(ConfigError):
            apply_options(FisherKolmogorovConfig(), options)
    finally:
        options.delValue("deltat")
