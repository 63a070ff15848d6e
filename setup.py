"""Setup configuration for importctl."""

from setuptools import setup, find_packages

setup(
    name="importctl",
    version="1.0.0",
    description="Serialized import job scheduler for a rate-limited data source",
    packages=find_packages(include=["importctl", "importctl.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "importctl=importctl.cli:cli",
        ],
    },
    python_requires=">=3.9",
)
