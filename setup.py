#!/usr/bin/env python3
"""
Setup script for NetworkPolicy Test Planner
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="netpol-test-planner",
    version="0.1.0",
    author="NetworkPolicy Test Planner Contributors",
    author_email="maintainers@example.com",
    description="Environment-aware planning and reporting for Kubernetes NetworkPolicy recipe tests",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["netpol_planner"],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Systems Administration",
    ],
    python_requires=">=3.8",
    install_requires=[
        "kubernetes>=26.1.0",
        "pyyaml>=6.0.1",
        "click>=8.1.3",
        "rich>=13.3.5",
        "jinja2>=3.1.2",
        "requests>=2.28.2",
        "urllib3>=1.26.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "netpol-planner=netpol_planner:cli",
        ],
    },
    include_package_data=True,
)
