#!/usr/bin/env python3
"""
Setup script for the fhevmclient session library
"""

from setuptools import setup, find_packages
import os

# Read README if it exists
long_description = "fhevmclient: client-side session layer for FHE-enabled EVM chains"
readme_path = os.path.join(os.path.dirname(__file__), "README.md")
if os.path.exists(readme_path):
    with open(readme_path, "r", encoding="utf-8") as fh:
        long_description = fh.read()

setup(
    name="fhevmclient",
    version="0.1.0",
    description="fhevmclient: encrypted inputs, decryption signatures and relay decryption for FHE-enabled EVM chains",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="fhevmclient developers",
    packages=find_packages(exclude=["tests", "tests.*", "docs"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.21.0",
        "pandas>=1.3.0",
        "httpx>=0.24.0",
        "eth-account>=0.10.0",
        "eth-utils>=2.0.0",
        "cryptography>=41.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=2.10.0",
            "black>=21.0.0",
            "flake8>=3.8.0",
            "mypy>=0.900",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security :: Cryptography",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords="homomorphic-encryption, fhevm, ethereum, eip-712, privacy-preserving, cryptography",
)
