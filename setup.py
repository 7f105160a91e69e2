"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="studymate-client",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.27",
        "pydantic>=2.0",
        "structlog>=23.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "fastapi>=0.110",
            "python-multipart>=0.0.9",
        ],
    },
)
