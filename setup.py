#!/usr/bin/env python3
"""
Setup script for the deployment manager.
"""

from setuptools import setup, find_packages

setup(
    name="deployment-manager",
    version="1.0.0",
    description="Lifecycle, manifest generation and backups of service deployments",
    python_requires=">=3.10",
    packages=find_packages(include=["deployment_manager", "deployment_manager.*"]),
    install_requires=[
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "aiofiles>=23.0",
        "PyJWT>=2.8",
        "Jinja2>=3.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "deployment-manager=deployment_manager.cli:main",
        ],
    },
)
