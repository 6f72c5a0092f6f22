"""
EdgeLearn Core - Setup
"""

from setuptools import setup, find_packages

setup(
    name="edgelearn",
    version="0.3.0",
    description="On-device adaptive learning engine with differential privacy and hardware-aware optimization",
    author="EdgeLearn Team",
    packages=find_packages(include=["edgelearn", "edgelearn.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "torch>=1.12.0",
        "loguru>=0.6.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
    },
)
