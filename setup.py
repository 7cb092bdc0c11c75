#!/usr/bin/env python
"""
Product Ratings Service Setup
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="product-ratings",
    version="1.0.0",
    description="Review moderation, rating aggregates and cached product/review reads",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["ratings", "ratings.*"]),
    py_modules=["run_server"],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "aiosqlite>=0.19.0",
            "httpx>=0.25.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ratings-server=run_server:main",
            "ratings-create-schema=ratings.database.connection:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Framework :: FastAPI",
    ],
    zip_safe=False,
)
