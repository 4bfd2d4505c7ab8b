# setup.py
from pathlib import Path
from setuptools import setup, find_packages


def read_requirements(file: str):
    reqs = []
    for line in Path(file).read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            reqs.append(line)
    return reqs


setup(
    name="tensorreg",
    version="0.3.0",
    description="Cost-gated burned registration loop for Subtensor",
    packages=find_packages(include=["tensorreg", "tensorreg.*"]),
    python_requires=">=3.10",
    install_requires=read_requirements("requirements.txt"),
    extras_require={
        "test": ["pytest>=7.4", "pytest-asyncio>=0.23"],
    },
    entry_points={
        "console_scripts": [
            "register_neuron=tensorreg.scripts.register_neuron:main",
            "register_subnet=tensorreg.scripts.register_subnet:main",
            "analyze_blocks=tensorreg.scripts.analyze_blocks:main",
        ],
    },
)
