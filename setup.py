"""Setup script for agentic_core package."""

from setuptools import setup, find_packages

setup(
    name="agentic-core",
    version="0.1.0",
    description="Tool-augmented agent runtime: agentic loop, MCP tool servers, context and rate-limit handling",
    packages=find_packages(include=["agentic_core", "agentic_core.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "httpx>=0.25.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "agentic-core=agentic_core.main:main",
        ],
    },
    package_data={
        "agentic_core": ["config/default_config.yaml"],
    },
)
