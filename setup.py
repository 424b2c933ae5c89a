"""
Setup script for the observation aggregator.

Notes
-----
- Reads long description and requirements from adjacent files for clarity.
- Declares an optional extra for development and testing.
- Packages typed hints via ``py.typed``.
"""
from setuptools import setup, find_packages

# Long description for PyPI project page
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Base runtime requirements
with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="observation-aggregator",
    version="1.0.0",
    description="Multi-source observation aggregation engine with health-aware routing and conflict resolution",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["obsagg", "obsagg.*"]),  # discovers "obsagg" package
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Scientific/Engineering :: Atmospheric Science",
    ],
    keywords=[
        "aggregation", "weather", "flight", "data-quality", "conflict-resolution", "asyncio"
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=23.0",
            "mypy>=1.0",
            "pytest-asyncio>=0.21",
            "pytest-cov>=4.0",
        ],
    },
    package_data={
        # Include typing marker for PEP 561
        "obsagg": ["py.typed"],
    },
    include_package_data=True,
    zip_safe=False,
)
