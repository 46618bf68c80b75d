"""Setup script for the agentflow package."""

from setuptools import find_packages, setup

setup(
    name="agentflow",
    version="0.1.0",
    packages=find_packages(include=["agentflow", "agentflow.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "httpx>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "structlog>=24.1",
        "prometheus-client>=0.20",
        "asyncpg>=0.29",
        "sqlalchemy>=2.0",
        "alembic>=1.13",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    description="agentflow - plan, dispatch and summarize multi-step tool tasks",
    author="agentflow Team",
)
