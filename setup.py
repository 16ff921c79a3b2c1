from setuptools import find_packages, setup

setup(
    name="fem-struct",
    version="0.1.0",
    description="Residual and Jacobian assembly for nonlinear beam, shell and solid structures",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "scipy",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
