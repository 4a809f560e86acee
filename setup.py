"""
dbset - Typed query builders for relational tables
Install: pip install -e .
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="dbset",
    version="1.0.0",
    author="Diegoproggramer",
    author_email="",
    description="Typestate query builders and statement generation for SQL tables",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/Diegoproggramer/dbset",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Topic :: Software Development :: Code Generators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: AsyncIO",
        "Framework :: Pydantic :: 2",
    ],
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "sqlalchemy>=2.0.0",
    ],
    extras_require={
        "postgres": [
            "asyncpg>=0.28.0",
        ],
        "dev": [
            "pytest>=7.0",
            "aiosqlite>=0.19.0",
            "greenlet>=3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dbset=dbset.cli:cli_main",
        ],
    },
    keywords="sql, query-builder, typestate, asyncpg, sqlalchemy, code-generator",
)
