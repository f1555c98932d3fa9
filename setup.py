#!/usr/bin/env python3
"""
Setup configuration for the chatcorrelator package.

This makes the common modules and the correlation core importable by the
extraction pipeline that hosts them.

Install in development mode: pip install -e .
"""

from pathlib import Path
from setuptools import setup, find_packages

# Read the README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements from requirements.txt
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    with open(requirements_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("-"):
                requirements.append(line)

setup(
    name="chatcorrelator",
    version="0.1.0",
    description="Correlates WhatsApp databases of a forensic case: backup merging, media linking and download",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["common", "common.*", "correlator", "correlator.*"]),
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "Topic :: System :: Archiving",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
    keywords="forensics whatsapp messaging backup-merge media-linking",
)
