##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Run parameters for the Fisher-Kolmogorov solver.

Parameters live in a YAML file whose sections and keys use the
human-readable names below (python attribute names are accepted as well):

.. code-block:: yaml

    Mesh & geometry:
      Mesh file: ../mesh/brain-h3.0.msh
      Degree: 1
    Physical constants:
      Dext: 1.0
      Daxn: 10.0
      Alpha: 0.1
    Time stepping:
      T: 1.0
      deltat: 0.1
      Theta: 1.0
    Solver:
      Max Newton iterations: 1000
      Newton tolerance: 1.0e-6
      Max CG iterations: 1000
      CG tolerance factor: 1.0e-6

Every value can also be overridden from the command line through the PETSc
options database, using the python attribute name with an ``fk_`` prefix:

    mpirun -np 4 python -m fisher_kolmogorov -fk_params run.yaml -fk_deltat 0.05

Validation is done by pydantic; any violation is reported as a
:class:`~fisher_kolmogorov.errors.ConfigError`.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class MeshGeometry(_Section):
    """Mesh & geometry parameters"""

    mesh_file: Optional[str] = Field(
        default=None,
        alias="Mesh file",
        description="Path to the mesh file (GMSH format)",
    )
    degree: int = Field(
        default=1,
        ge=1,
        alias="Degree",
        description="Polynomial degree of finite element",
    )


class PhysicalConstants(_Section):
    """Physical constants"""

    d_ext: float = Field(
        default=1.0, ge=0, alias="Dext", description="Isotropic (extracellular) diffusion scale"
    )
    d_axn: float = Field(
        default=10.0, ge=0, alias="Daxn", description="Axonal (anisotropic) diffusion scale"
    )
    alpha: float = Field(
        default=0.1,
        ge=0,
        validation_alias=AliasChoices("Alpha", "Alpha coefficient", "alpha"),
        serialization_alias="Alpha",
        description="Reaction rate",
    )


class TimeStepping(_Section):
    """Time stepping parameters"""

    T: float = Field(default=1.0, ge=0, alias="T", description="Final simulation time")
    deltat: float = Field(default=0.1, gt=0, alias="deltat", description="Time step size")
    theta: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        alias="Theta",
        description="Theta value for the time-stepping method (0=explicit, 1=implicit)",
    )


class SolverParameters(_Section):
    """Solver parameters"""

    max_newton_iterations: int = Field(default=1000, ge=1, alias="Max Newton iterations")
    newton_tolerance: float = Field(default=1e-6, ge=0, alias="Newton tolerance")
    max_cg_iterations: int = Field(default=1000, ge=1, alias="Max CG iterations")
    cg_tolerance_factor: float = Field(
        default=1e-6,
        ge=0,
        alias="CG tolerance factor",
        description="Tolerance factor for CG solver (multiplied by residual norm)",
    )
    abort_on_newton_failure: bool = Field(
        default=False,
        alias="Abort on Newton failure",
        description="Raise instead of continuing when Newton hits its iteration cap",
    )


class OutputParameters(_Section):
    """Output parameters"""

    directory: str = Field(default=".", alias="Directory")
    enabled: bool = Field(default=True, alias="Enabled")


class FisherKolmogorovConfig(_Section):
    """
    Complete, validated set of run parameters.

    Example
    -------
    >>> config = FisherKolmogorovConfig.from_yaml(file_path="run.yaml")
    >>> config.time_stepping.deltat
    0.1
    >>> config.to_yaml("run_copy.yaml")
    """

    mesh: MeshGeometry = Field(
        default_factory=MeshGeometry,
        validation_alias=AliasChoices("Mesh & geometry", "Mesh & geometry parameters", "mesh"),
        serialization_alias="Mesh & geometry",
    )
    physics: PhysicalConstants = Field(
        default_factory=PhysicalConstants,
        validation_alias=AliasChoices("Physical constants", "physics"),
        serialization_alias="Physical constants",
    )
    time_stepping: TimeStepping = Field(
        default_factory=TimeStepping,
        validation_alias=AliasChoices("Time stepping", "Time stepping parameters", "time_stepping"),
        serialization_alias="Time stepping",
    )
    solver: SolverParameters = Field(
        default_factory=SolverParameters,
        validation_alias=AliasChoices("Solver", "Solver parameters", "solver"),
        serialization_alias="Solver",
    )
    output: OutputParameters = Field(
        default_factory=OutputParameters,
        validation_alias=AliasChoices("Output", "output"),
        serialization_alias="Output",
    )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "FisherKolmogorovConfig":
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigError(f"Invalid parameters:\n{e}") from e

    @classmethod
    def from_yaml(cls, yaml_content: str = None, file_path: str = None) -> "FisherKolmogorovConfig":
        """
        Build a configuration from YAML.

        Parameters
        ----------
        yaml_content : str, optional
            YAML string to parse
        file_path : str, optional
            Path to YAML file to load
        """
        if file_path:
            try:
                yaml_content = Path(file_path).read_text()
            except OSError as e:
                raise ConfigError(f"Cannot read parameter file {file_path}: {e}") from e
        elif yaml_content is None:
            raise ValueError("Must provide either yaml_content or file_path")

        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Parameter file is not valid YAML: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigError("Parameter file must contain a mapping of sections")

        return cls.from_dict(data)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_yaml(self, file_path: Optional[str] = None) -> str:
        """
        Export the configuration to YAML format.

        Parameters
        ----------
        file_path : str, optional
            If provided, write YAML to this file path

        Returns
        -------
        str
            YAML string representation of the configuration
        """
        yaml_str = yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

        if file_path:
            Path(file_path).write_text(yaml_str)

        return yaml_str


def load_config(file_path: str) -> FisherKolmogorovConfig:
    """Read and validate a YAML parameter file."""
    return FisherKolmogorovConfig.from_yaml(file_path=file_path)


def _get_petsc_option(opts, name: str, default):
    """Get option value from PETSc, matching the type of default."""
    if isinstance(default, bool):
        return opts.getBool(name, default)
    elif isinstance(default, int):
        return opts.getInt(name, default)
    elif isinstance(default, float):
        return opts.getReal(name, default)
    else:
        return opts.getString(name, default)


def apply_options(config: FisherKolmogorovConfig, options=None) -> FisherKolmogorovConfig:
    """
    Return a copy of ``config`` with PETSc command-line overrides applied.

    Each parameter is looked up under its python attribute name, so with the
    default ``fk_`` prefix the flags are ``-fk_degree``, ``-fk_alpha``,
    ``-fk_deltat``, ``-fk_mesh_file``, ``-fk_max_cg_iterations`` ...
    """
    if options is None:
        from petsc4py import PETSc

        options = PETSc.Options("fk_")

    data = {}
    for section_name in type(config).model_fields:
        section = getattr(config, section_name)
        values = section.model_dump()
        for name, value in values.items():
            if options.hasName(name):
                try:
                    values[name] = _get_petsc_option(options, name, value)
                except Exception as e:
                    raise ConfigError(f"Cannot parse command line option -{name}: {e}") from e
        data[section_name] = values

    return FisherKolmogorovConfig.from_dict(data)
