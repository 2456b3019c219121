"""
Setup script for Kelpie-DNS.
"""

from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line for line in fh.read().splitlines() if line and not line.startswith("#")]

setup(
    name="kelpie-dns",
    version="0.1.0",
    author="Kelpie-DNS contributors",
    description="Keeps DNS provider records in sync with the endpoints declared by your services",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.24",
            "respx>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "kelpie-dns=kelpie_dns.__main__:main",
        ],
    },
    include_package_data=True,
)
