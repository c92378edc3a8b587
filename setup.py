"""Setup configuration for media-ingest."""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="media-ingest",
    version="0.1.0",
    author="Media Ingest Contributors",
    description="Direct-to-S3 media uploads with a leased thumbnail job queue",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Multimedia :: Graphics",
    ],
    python_requires=">=3.10",
    install_requires=[
        "asyncpg>=0.27.0",
        "boto3>=1.26.0",
        "pydantic>=2.0.0",
        "Pillow>=10.0.0",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "fastapi": [
            "fastapi>=0.110.0",
            "uvicorn[standard]>=0.20.0",
        ],
        "dev": [
            "fastapi>=0.110.0",
            "uvicorn[standard]>=0.20.0",
            "httpx>=0.24.0",
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "testcontainers[postgres]>=3.7.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "media-ingest-worker=media_ingest.worker_main:main",
            "media-ingest-api=media_ingest.api_main:main",
        ],
    },
)
