from setuptools import setup, find_packages

setup(
    name="ratekeeper",
    version="0.1.0",
    packages=find_packages(include=["ratekeeper", "ratekeeper.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "redis>=5.0",
        "SQLAlchemy[asyncio]>=2.0",
        "tiktoken>=0.5",
    ],
    extras_require={
        "sql": ["asyncpg>=0.29", "aiosqlite>=0.19"],
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "aiosqlite>=0.19",
        ],
    },
)
