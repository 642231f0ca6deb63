"""Setup configuration for declcfg-inline-bundles"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text()

setup(
    name="declcfg-inline-bundles",
    version="1.0.0",
    description="Inline bundle image manifests into declarative config operator catalogs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/stolostron/installer-dev-tools",
    packages=find_packages(include=["declcfg_inline_bundles", "declcfg_inline_bundles.*"]),
    python_requires=">=3.9",
    install_requires=[
        "PyYAML>=6.0",
        "coloredlogs>=15.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "declcfg-inline-bundles=declcfg_inline_bundles.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Topic :: Utilities",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
    keywords="olm operator catalog declcfg bundle kubernetes",
)
