# setup.py
from setuptools import find_packages, setup

setup(
    name="faultline",
    version="0.1.0",
    description="Structured error envelopes, policy gates and scoped transactions for FastAPI services",
    python_requires=">=3.11",
    packages=find_packages(include=["faultline", "faultline.*"]),
    include_package_data=True,
    install_requires=[
        "fastapi>=0.110",
        "starlette",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg>=0.29",
        "structlog>=24.1",
        "sentry-sdk>=1.40",
        "limits>=3.7",
    ],
    extras_require={
        "test": [
            "pytest>=8",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
)
