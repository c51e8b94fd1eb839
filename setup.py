"""
HookStream setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="hookstream",
    version="1.0.0",
    description="HookStream — Webhook event ingestion and payload transformation",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "hookstream=hookstream.cli:main",
        ],
    },
    install_requires=[
        "pydantic>=2.5",
        "redis>=5.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
