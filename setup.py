"""
Setup script for triple-helix.

Triple Helix is a spaced-repetition stitch sequencing engine. It serves
three roles:

1. Sequencing - Three rotating tubes of stitches ordered by skip number
2. Content Delivery - Buffered stitch content with offline fallbacks
3. Durable Progress - Layered, offline-tolerant progress writes

The 'helix' command is the terminal player; main.py runs the HTTP API.
"""

from setuptools import find_packages, setup

setup(
    name="triple-helix",
    version="0.1.0",
    description="Spaced-repetition stitch sequencing engine with offline-tolerant progress",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "asyncpg>=0.28.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "helix=helix.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning spaced-repetition sequencing education offline",
)
