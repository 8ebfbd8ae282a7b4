"""Setup script for Marketplace Payments."""

from setuptools import setup, find_packages

setup(
    name="marketplace_payments",
    version="0.1.0",
    description="Signed payment gateway client and webhook reconciliation for a marketplace backend",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi>=0.104.0",
        "httpx>=0.25.0",
        "pydantic>=2.4.0",
        "pydantic-settings>=2.0.0",
        "SQLAlchemy[asyncio]>=2.0.0",
        "structlog>=23.1.0",
        "python-json-logger>=2.0.7",
        "prometheus-client>=0.17.0",
        "uvicorn[standard]>=0.24.0",
        "aiosqlite>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
