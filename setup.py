# setup.py
from setuptools import setup, find_packages

setup(
    name="txnbench",
    version="0.1.0",
    description="Multi-threaded batched-insert load harness for transactional stores",
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "rocksdict",
        "setproctitle>=1.2",
        "tqdm",
    ],
    extras_require={
        "spanner": ["google-cloud-spanner>=3.0"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["txnbench=txnbench.cli:main"],
    },
)
