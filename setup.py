from setuptools import setup, find_packages

setup(
    name="beacon-ingestor",
    version="0.1.0",
    packages=find_packages(include=["beacon_ingestor", "beacon_ingestor.*"]),
    install_requires=[
        "aiohttp>=3.8.5",
        "clickhouse-connect>=0.6.0",
        "pydantic>=2.3.0",
        "python-dotenv>=1.0.0",
        "tenacity>=8.2.3",
        "structlog>=23.1.0",
        "SQLAlchemy>=2.0",
        "psycopg2-binary>=2.9",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "beacon-ingestor=beacon_ingestor.main:run",
        ],
    },
    description="Polls a beacon node and keeps a time-bounded relational copy of slots, validators and epochs",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
)
