from setuptools import setup, find_packages

setup(
    name="learnhub-backend",
    version="0.1.0",
    packages=find_packages(exclude=["learnhub.tests", "learnhub.tests.*"]),
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn>=0.15.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "aiohttp>=3.8.0",
        "PyJWT>=2.4.0",
        "sqlalchemy>=1.4.0",
        "alembic>=1.7.0",
        "python-dotenv>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",
        ],
    },
    python_requires=">=3.9",
)
