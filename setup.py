from setuptools import setup, find_packages

setup(
    name="quotaguard",
    version="0.1.0",
    packages=find_packages(include=["quotaguard", "quotaguard.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.3",
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg>=0.29",
        "aiosqlite>=0.19",
        "redis>=5.0",
        "google-cloud-firestore>=2.14",
        "firebase-admin>=6.4",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
            "fakeredis[lua]>=2.23",
        ],
    },
)
