#!/usr/bin/env python

# Usage:
#  $ pip install .
#  $ pip install -e ".[test]"

from setuptools import setup, find_packages


# util function to get version information from file with __version__=
def get_version(filename):
    try:
        with open(filename, "r") as f:
            for line in f:
                if line.startswith("__version__"):
                    # extract the version string and strip it
                    version = line.split('"')[1].strip().strip('"').strip("'")
                    return version
    except FileNotFoundError:
        print(f"Cannot get version information from {filename}")


setup(
    name="fisher-kolmogorov3d",
    version=get_version("./src/fisher_kolmogorov/_version.py"),
    description="Parallel finite element solver for the 3D Fisher-Kolmogorov equation",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "sympy",
        "petsc4py",
        "mpi4py",
        "gmsh",
        "pyvista",
        "pydantic>=2",
        "pyyaml",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mpi",
            "pytest-timeout",
        ],
    },
    entry_points={
        "console_scripts": [
            "fisher-kolmogorov3d=fisher_kolmogorov.__main__:main",
        ],
    },
)
