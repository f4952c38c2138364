"""Package setup for hourbank."""

from setuptools import setup, find_packages

setup(
    name="hourbank",
    version="1.0.0",
    description="Hour-package pricing and prepaid-hour credit service",
    packages=find_packages(include=["hourbank", "hourbank.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.110.0",
        "starlette>=0.36.0",
        "pydantic>=2.0.0",
        "uvicorn>=0.27.0",
        "typer>=0.12.0",
        "rich>=13.0.0",
        "click>=8.0.0",
        "pyyaml>=6.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "stripe": ["stripe>=7.0.0"],
        "test": ["pytest>=7.0.0"],
        "all": ["stripe>=7.0.0", "pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "hourbank=hourbank.cli:app",
        ],
    },
)
