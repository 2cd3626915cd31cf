# setup.py
from setuptools import setup, find_packages

setup(
    name="wiki_scout",
    version="0.1.0",
    description="Resumable wiki crawler with hybrid lexical and vector search",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "click>=8.1",
        "numpy>=1.26",
        "pydantic>=2.5",
        "PyYAML>=6.0",
    ],
    extras_require={
        # the embedding model is loaded lazily, only when a search needs it
        "embeddings": ["sentence-transformers>=2.6"],
        "test": ["pytest>=8.0", "pytest-asyncio>=0.23"],
    },
    entry_points={
        "console_scripts": ["wiki-scout=wiki_scout.cli:cli"],
    },
    python_requires=">=3.11",
)
