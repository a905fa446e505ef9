from setuptools import setup, find_packages


if __name__ == "__main__":
    setup(
        name="tpf",
        version="0.1.0",
        description="Tempered particle filter likelihoods for linear state space models",
        platforms="linux",
        packages=find_packages(include=["tpf", "tpf.*"]),
        python_requires=">=3.8",
        install_requires=[
            "numpy",
            "pandas",
            "scipy",
            "pyyaml",
            "numba",
        ],
        extras_require={
            "test": ["pytest"],
        },
    )
